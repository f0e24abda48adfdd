"""
Ollama provider implementation.

This module implements the LLMProviderInterface for Ollama's local model
server using its native chat API. Replies are single JSON objects for
non-streaming calls and newline-delimited JSON when streaming.
"""

import re
import time
from typing import List, Dict, Any, AsyncIterator, Optional

from inference_core.llm.interfaces.llm_provider_interface import (
    Message,
    LLMRequest,
    LLMResponse,
    ModelInfo,
    ProviderHealth,
    ResponseFormat,
    TokenChunk,
    LLMProtocolError
)
from inference_core.llm.providers.base import HTTPProviderBase, PAYLOAD_EXCERPT_CHARS
from inference_core.llm.streaming import StreamFraming, extract_usage, safe_int

DEFAULT_CONTEXT_WINDOW = 4096

_NUM_CTX_PATTERN = re.compile(r'^\s*num_ctx\s+(\d+)\s*$', re.IGNORECASE | re.MULTILINE)


def parse_parameter_size(size: str) -> int:
    """
    Parse an Ollama ``parameter_size`` string such as "7B" or "350M".

    Returns:
        Raw parameter count, or 0 when the value cannot be parsed
    """
    if not size:
        return 0
    size = size.strip().upper()
    multiplier = 1
    if size.endswith('B'):
        multiplier, size = 1_000_000_000, size[:-1]
    elif size.endswith('M'):
        multiplier, size = 1_000_000, size[:-1]
    try:
        return int(float(size) * multiplier)
    except ValueError:
        return 0


class OllamaLLMProvider(HTTPProviderBase):
    """
    Ollama provider for local model inference.

    Uses ``/api/chat`` for completions, ``/api/tags`` to detect loaded models,
    ``/api/show`` for model metadata and ``/api/pull`` to download models.
    """

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, str]]:
        return [message.to_dict() for message in messages]

    def _build_chat_payload(self, request: LLMRequest, stream: bool) -> Dict[str, Any]:
        """
        Build the ``/api/chat`` body.

        Args:
            request: Canonical request
            stream: Whether to ask for an NDJSON stream

        Returns:
            JSON-serializable request body
        """
        options: Dict[str, Any] = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
            "top_p": request.top_p
        }
        if request.repetition_penalty is not None:
            options["repeat_penalty"] = request.repetition_penalty
        if request.stop:
            options["stop"] = list(request.stop)

        payload: Dict[str, Any] = {
            "model": self._resolve_model(request),
            "messages": self._convert_messages(request.messages),
            "stream": stream,
            "options": options
        }
        if request.response_format == ResponseFormat.JSON:
            payload["format"] = "json"
        return payload

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            request: Canonical request

        Returns:
            Response with usage derived from Ollama's eval counters

        Raises:
            LLMConnectionError: If the server cannot be reached or rejects the request
            LLMProtocolError: If the reply has no ``message.content``
        """
        model = self._resolve_model(request)
        self.logger.debug(f"Ollama chat completion with {model} ({len(request.messages)} messages)")

        start_time = time.monotonic()
        response_data = await self._post_json(
            "/api/chat",
            self._build_chat_payload(request, stream=False),
            timeout=self._request_timeout(request)
        )
        duration = time.monotonic() - start_time

        message = response_data.get('message') if isinstance(response_data, dict) else None
        content = message.get('content') if isinstance(message, dict) else None
        if not isinstance(content, str):
            excerpt = str(response_data)[:PAYLOAD_EXCERPT_CHARS]
            self.logger.error(f"Ollama reply without message.content: {excerpt}")
            raise LLMProtocolError(
                "Ollama reply is missing message.content",
                provider_id=self.provider_id,
                payload=excerpt
            )

        total_duration_ns = safe_int(response_data.get('total_duration')) or 0
        return LLMResponse(
            content=content,
            usage=extract_usage(response_data),
            duration=total_duration_ns / 1e9 if total_duration_ns > 0 else duration,
            finish_reason=response_data.get('done_reason') or None,
            model=response_data.get('model') or model,
            metadata={
                'provider': 'ollama',
                'eval_duration': response_data.get('eval_duration'),
                'prompt_eval_duration': response_data.get('prompt_eval_duration')
            }
        )

    async def complete_streaming(self, request: LLMRequest) -> AsyncIterator[TokenChunk]:
        """
        Stream a chat completion as newline-delimited JSON.

        Yields:
            Token chunks; the final one carries usage
        """
        self.logger.debug(f"Ollama streaming chat completion with {self._resolve_model(request)}")
        async for chunk in self._stream(
            "/api/chat",
            self._build_chat_payload(request, stream=True),
            StreamFraming.NDJSON,
            request
        ):
            yield chunk

    async def _list_model_names(self) -> List[str]:
        data = await self._get_json("/api/tags", timeout=self._health_timeout())
        models = data.get('models', []) if isinstance(data, dict) else []
        return [m.get('name', '') for m in models if isinstance(m, dict)]

    def _find_loaded_model(self, names: List[str]) -> Optional[str]:
        """
        Return the listed tag naming the configured model, case-insensitively.

        A model configured without a tag means ``:latest``, as it does for
        Ollama itself. With no model configured any tag counts.
        """
        wanted = self.model_name.lower()
        if not wanted:
            return names[0] if names else None
        if ":" not in wanted:
            wanted = f"{wanted}:latest"
        for name in names:
            if name.lower() == wanted:
                return name
        return None

    async def probe_health(self) -> ProviderHealth:
        """
        Ping the server root, then list local models.

        Returns:
            Health snapshot; unreachable on any failure
        """
        try:
            if not await self._get_ok("/"):
                return ProviderHealth.unreachable()
            active_model = self._find_loaded_model(await self._list_model_names())
            return ProviderHealth(
                reachable=True,
                model_loaded=active_model is not None,
                active_model=active_model
            )
        except Exception as e:
            self.logger.debug(f"Ollama health check failed for {self.provider_id}: {e}")
            return ProviderHealth.unreachable()

    async def describe_model(self) -> ModelInfo:
        """
        Read model metadata from ``/api/show``.

        The context window comes from a ``num_ctx`` line in the model's
        parameters; quantization and size come from ``details``.
        """
        model = self.model_name or "unknown"
        override = self.descriptor.context_window_override
        try:
            data = await self._post_json("/api/show", {"model": model}, timeout=self._health_timeout())
        except Exception as e:
            self.logger.error(f"Failed to get model info for {model}: {e}")
            return ModelInfo(model, override or DEFAULT_CONTEXT_WINDOW, is_loaded=False)

        context_window = DEFAULT_CONTEXT_WINDOW
        parameters = data.get('parameters') if isinstance(data, dict) else None
        if isinstance(parameters, str):
            match = _NUM_CTX_PATTERN.search(parameters)
            if match:
                context_window = int(match.group(1))

        details = data.get('details') if isinstance(data, dict) else None
        details = details if isinstance(details, dict) else {}
        return ModelInfo(
            model_id=model,
            context_window=override or context_window,
            quantization=details.get('quantization_level') or "unknown",
            parameter_count=parse_parameter_size(details.get('parameter_size') or ""),
            vram_usage_mb=0,
            is_loaded=True
        )

    async def ensure_model_loaded(self) -> bool:
        """
        Pull the configured model unless it is already present.

        Returns:
            True if the model is available
        """
        try:
            if self._find_loaded_model(await self._list_model_names()) is not None:
                return True
            self.logger.info(f"Model {self.model_name} not found, pulling...")
            await self._post_json("/api/pull", {"model": self.model_name, "stream": False})
            self.logger.info(f"Model {self.model_name} pulled successfully")
            return True
        except Exception as e:
            self.logger.error(f"Failed to pull model {self.model_name}: {e}")
            return False
