"""
OpenAI-compatible provider implementation.

This module implements the LLMProviderInterface for any server exposing the
OpenAI chat-completions API (LM Studio, LocalAI, text-generation-webui and
similar). Streaming uses Server-Sent Events terminated by ``[DONE]``.
"""

import time
from typing import Dict, Any, AsyncIterator, Optional

from inference_core.llm.interfaces.llm_provider_interface import (
    LLMRequest,
    LLMResponse,
    LLMUsage,
    ModelInfo,
    ProviderHealth,
    ResponseFormat,
    TokenChunk,
    LLMProtocolError
)
from inference_core.llm.providers.base import HTTPProviderBase, PAYLOAD_EXCERPT_CHARS
from inference_core.llm.streaming import StreamFraming, safe_int

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"


class OpenAICompatibleLLMProvider(HTTPProviderBase):
    """
    Provider for servers speaking the OpenAI chat-completions protocol.

    Authentication is an optional bearer token read from the environment
    variable named by the descriptor's ``api_key_env``.
    """

    default_context_window = 4096

    # Wire field carrying the repetition penalty.
    penalty_field = "frequency_penalty"

    def _build_body(self, request: LLMRequest, stream: bool) -> Dict[str, Any]:
        """Build the chat-completions body."""
        body: Dict[str, Any] = {
            "model": self._resolve_model(request) or "default",
            "messages": [message.to_dict() for message in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "top_p": request.top_p,
            "stream": stream
        }
        if request.stop:
            body["stop"] = list(request.stop)
        if request.repetition_penalty is not None:
            body[self.penalty_field] = request.repetition_penalty
        if request.response_format == ResponseFormat.JSON:
            body["response_format"] = {"type": "json_object"}
        return body

    def _parse_completion(self, data: Any, request: LLMRequest, duration: float) -> LLMResponse:
        """
        Map a chat-completions reply to a response.

        Raises:
            LLMProtocolError: If ``choices[0].message.content`` is missing
        """
        choice = None
        if isinstance(data, dict):
            choices = data.get('choices')
            if isinstance(choices, list) and choices and isinstance(choices[0], dict):
                choice = choices[0]
        message = choice.get('message') if choice else None
        content = message.get('content') if isinstance(message, dict) else None
        if not isinstance(content, str):
            excerpt = str(data)[:PAYLOAD_EXCERPT_CHARS]
            self.logger.error(f"{self.provider_id} reply without choices[0].message.content: {excerpt}")
            raise LLMProtocolError(
                f"{self.provider_id} reply is missing choices[0].message.content",
                provider_id=self.provider_id,
                payload=excerpt
            )

        usage_data = data.get('usage') if isinstance(data.get('usage'), dict) else {}
        prompt_tokens = safe_int(usage_data.get('prompt_tokens')) or 0
        completion_tokens = safe_int(usage_data.get('completion_tokens')) or 0
        tokens_per_second = completion_tokens / duration if duration > 0 else 0.0

        return LLMResponse(
            content=content,
            usage=LLMUsage.from_counts(prompt_tokens, completion_tokens, tokens_per_second),
            duration=duration,
            finish_reason=choice.get('finish_reason') or None,
            model=data.get('model') or self._resolve_model(request),
            metadata={'provider': self.descriptor.backend.value}
        )

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            request: Canonical request

        Returns:
            Response with wall-clock throughput

        Raises:
            LLMConnectionError: If the server cannot be reached or rejects the request
            LLMProtocolError: If the reply has no generated content
        """
        self.logger.debug(
            f"{self.provider_id} chat completion with {self._resolve_model(request)} "
            f"({len(request.messages)} messages)"
        )
        start_time = time.monotonic()
        data = await self._post_json(
            CHAT_COMPLETIONS_PATH,
            self._build_body(request, stream=False),
            timeout=self._request_timeout(request)
        )
        return self._parse_completion(data, request, time.monotonic() - start_time)

    async def complete_streaming(self, request: LLMRequest) -> AsyncIterator[TokenChunk]:
        """
        Stream a chat completion over SSE.

        Yields:
            Token chunks; the final one carries usage
        """
        async for chunk in self._stream(
            CHAT_COMPLETIONS_PATH,
            self._build_body(request, stream=True),
            StreamFraming.SSE,
            request
        ):
            yield chunk

    async def probe_health(self) -> ProviderHealth:
        """
        Send a one-token completion, since the protocol has no health endpoint.

        Returns:
            Health snapshot; the served model name comes from the reply
        """
        body = {
            "model": self.model_name or "default",
            "messages": [{"role": "user", "content": "hi"}],
            "max_tokens": 1,
            "temperature": 0.0
        }
        try:
            data = await self._post_json(CHAT_COMPLETIONS_PATH, body, timeout=self._health_timeout())
        except Exception as e:
            self.logger.warning(f"Health check failed for {self.provider_id}: {e}")
            return ProviderHealth.unreachable()

        active_model = self.model_name or None
        if isinstance(data, dict) and data.get('model'):
            active_model = data['model']
        return ProviderHealth(reachable=True, model_loaded=True, active_model=active_model)

    async def _fetch_models(self) -> Optional[list]:
        """Return the ``data`` list of ``/v1/models``, or None when unavailable."""
        try:
            payload = await self._get_json(MODELS_PATH, timeout=self._health_timeout())
        except Exception as e:
            self.logger.warning(f"Failed to fetch {MODELS_PATH} from {self.provider_id}: {e}")
            return None
        models = payload.get('data') if isinstance(payload, dict) else None
        if not isinstance(models, list):
            return None
        return [m for m in models if isinstance(m, dict)]

    async def describe_model(self) -> ModelInfo:
        """
        Read the served model from ``/v1/models``.

        The protocol exposes no context size, so the descriptor override or a
        conservative default is used.
        """
        model_id = self.model_name or "unknown"
        context_window = self.descriptor.context_window_override or self.default_context_window
        models = await self._fetch_models()
        if models:
            return ModelInfo(
                model_id=models[0].get('id') or model_id,
                context_window=context_window,
                is_loaded=True
            )
        return ModelInfo(model_id=model_id, context_window=context_window, is_loaded=False)

    async def ensure_model_loaded(self) -> bool:
        """Models cannot be loaded remotely through this protocol; confirm health instead."""
        health = await self.probe_health()
        return health.is_healthy
