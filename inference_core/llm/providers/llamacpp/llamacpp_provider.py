"""
llama.cpp server provider implementation.

The llama.cpp HTTP server has no chat endpoint we can rely on across builds,
so conversations are rendered into a ChatML prompt and sent to
``/completion``. Streaming uses SSE frames carrying ``content`` and a ``stop``
flag.
"""

import time
from typing import Dict, Any, AsyncIterator, List, Optional

from inference_core.llm.interfaces.llm_provider_interface import (
    Message,
    LLMRequest,
    LLMResponse,
    ModelInfo,
    ProviderHealth,
    TokenChunk,
    LLMProtocolError
)
from inference_core.llm.providers.base import HTTPProviderBase, PAYLOAD_EXCERPT_CHARS
from inference_core.llm.streaming import StreamFraming, extract_usage, safe_int

DEFAULT_CONTEXT_WINDOW = 4096

IM_START = "<|im_start|>"
IM_END = "<|im_end|>"


def format_chatml(messages: List[Message]) -> str:
    """
    Render messages as a ChatML prompt ending with an open assistant turn.

    Args:
        messages: Conversation in chronological order

    Returns:
        Prompt text
    """
    parts = [f"{IM_START}{m.role.value}\n{m.content}{IM_END}\n" for m in messages]
    parts.append(f"{IM_START}assistant\n")
    return "".join(parts)


class LlamaCppLLMProvider(HTTPProviderBase):
    """Provider for the llama.cpp HTTP server."""

    def _build_body(self, request: LLMRequest, stream: bool) -> Dict[str, Any]:
        """Build the ``/completion`` body; the ChatML end tag is always a stop sequence."""
        stops = [IM_END]
        if request.stop:
            stops.extend(request.stop)
        body: Dict[str, Any] = {
            "prompt": format_chatml(request.messages),
            "n_predict": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stream": stream,
            "stop": stops
        }
        if request.repetition_penalty is not None:
            body["repeat_penalty"] = request.repetition_penalty
        return body

    def _finish_reason(self, data: Dict[str, Any]) -> Optional[str]:
        if data.get('stop_type'):
            return str(data['stop_type'])
        if data.get('stopped_eos') is True or data.get('stopped_word') is True:
            return "stop"
        if data.get('stopped_limit') is True:
            return "length"
        return None

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a completion from the ChatML-rendered conversation.

        Raises:
            LLMConnectionError: If the server cannot be reached or rejects the request
            LLMProtocolError: If the reply has no ``content``
        """
        start_time = time.monotonic()
        data = await self._post_json(
            "/completion",
            self._build_body(request, stream=False),
            timeout=self._request_timeout(request)
        )
        duration = time.monotonic() - start_time

        content = data.get('content') if isinstance(data, dict) else None
        if not isinstance(content, str):
            excerpt = str(data)[:PAYLOAD_EXCERPT_CHARS]
            self.logger.error(f"llama.cpp reply without content: {excerpt}")
            raise LLMProtocolError(
                "llama.cpp reply is missing content",
                provider_id=self.provider_id,
                payload=excerpt
            )

        return LLMResponse(
            content=content,
            usage=extract_usage(data, elapsed=duration),
            duration=duration,
            finish_reason=self._finish_reason(data),
            model=data.get('model') or self._resolve_model(request),
            metadata={'provider': 'llamacpp'}
        )

    async def complete_streaming(self, request: LLMRequest) -> AsyncIterator[TokenChunk]:
        """
        Stream a completion over SSE.

        Yields:
            Token chunks; the final one carries usage
        """
        async for chunk in self._stream(
            "/completion",
            self._build_body(request, stream=True),
            StreamFraming.SSE,
            request
        ):
            yield chunk

    async def probe_health(self) -> ProviderHealth:
        """
        Query ``/health``; the model counts as loaded once it reports ``ok``.

        Returns:
            Health snapshot; unreachable on any failure
        """
        try:
            data = await self._get_json("/health", timeout=self._health_timeout())
        except Exception as e:
            self.logger.warning(f"Health check failed for llama.cpp {self.provider_id}: {e}")
            return ProviderHealth.unreachable()

        status = data.get('status') if isinstance(data, dict) else None
        loaded = isinstance(status, str) and status.lower() == "ok"
        return ProviderHealth(
            reachable=True,
            model_loaded=loaded,
            active_model=self.model_name or None
        )

    async def describe_model(self) -> ModelInfo:
        """Read the context size from ``/props`` and confirm load via ``/slots``."""
        context_window = self.descriptor.context_window_override or DEFAULT_CONTEXT_WINDOW
        loaded = False

        try:
            props = await self._get_json("/props", timeout=self._health_timeout())
            settings = props.get('default_generation_settings') if isinstance(props, dict) else None
            n_ctx = safe_int(settings.get('n_ctx')) if isinstance(settings, dict) else None
            if n_ctx and not self.descriptor.context_window_override:
                context_window = n_ctx
        except Exception as e:
            self.logger.warning(f"Failed to fetch /props from llama.cpp {self.provider_id}: {e}")

        try:
            loaded = await self._get_ok("/slots")
        except Exception as e:
            self.logger.warning(f"Failed to fetch /slots from llama.cpp {self.provider_id}: {e}")

        return ModelInfo(
            model_id=self.model_name or "unknown",
            context_window=context_window,
            is_loaded=loaded
        )

    async def ensure_model_loaded(self) -> bool:
        """llama.cpp serves a single model loaded at startup; confirm health instead."""
        health = await self.probe_health()
        return health.is_healthy
