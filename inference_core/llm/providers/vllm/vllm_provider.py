"""
vLLM provider implementation.

vLLM serves the OpenAI chat-completions protocol, so completions and
streaming are inherited. It differs in its dedicated ``/health`` endpoint,
its richer ``/v1/models`` entries and the ``repetition_penalty`` extension.
"""

from inference_core.llm.interfaces.llm_provider_interface import ModelInfo, ProviderHealth
from inference_core.llm.providers.openai.openai_provider import OpenAICompatibleLLMProvider
from inference_core.llm.streaming import safe_int


class VLLMProvider(OpenAICompatibleLLMProvider):
    """Provider for vLLM's OpenAI-compatible server."""

    default_context_window = 8192

    penalty_field = "repetition_penalty"

    async def probe_health(self) -> ProviderHealth:
        """
        Check ``/health`` and report the first served model from ``/v1/models``.

        Returns:
            Health snapshot; unreachable on any failure of ``/health``
        """
        try:
            reachable = await self._get_ok("/health")
        except Exception as e:
            self.logger.debug(f"vLLM health check failed for {self.provider_id}: {e}")
            return ProviderHealth.unreachable()
        if not reachable:
            return ProviderHealth.unreachable()

        models = await self._fetch_models()
        active_model = models[0].get('id') if models else None
        self.logger.debug(
            f"vLLM health: reachable={reachable}, loaded={active_model is not None}, model={active_model}"
        )
        return ProviderHealth(
            reachable=True,
            model_loaded=active_model is not None,
            active_model=active_model
        )

    async def describe_model(self) -> ModelInfo:
        """Read ``max_model_len``, quantization and size from the first served model."""
        override = self.descriptor.context_window_override
        models = await self._fetch_models()
        if not models:
            return ModelInfo(
                model_id=self.model_name or "unknown",
                context_window=override or self.default_context_window,
                is_loaded=False
            )

        model = models[0]
        context_window = override or safe_int(model.get('max_model_len')) or self.default_context_window
        return ModelInfo(
            model_id=model.get('id') or "unknown",
            context_window=context_window,
            quantization=model.get('quantization') or "unknown",
            parameter_count=safe_int(model.get('parameter_count')) or 0,
            vram_usage_mb=safe_int(model.get('vram_usage_mb')) or 0,
            is_loaded=True
        )

    async def ensure_model_loaded(self) -> bool:
        """
        vLLM loads its model at startup; confirm the configured one is served.

        Returns:
            True if the configured model id is listed by ``/v1/models``
        """
        models = await self._fetch_models()
        if models is None:
            return False
        wanted = self.model_name.lower()
        for model in models:
            if str(model.get('id', '')).lower() == wanted:
                self.logger.debug(f"Model {self.model_name} is loaded on vLLM")
                return True
        self.logger.warning(f"Model {self.model_name} not found on vLLM server")
        return False
