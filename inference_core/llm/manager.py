"""
Client manager with provider registry and health-gated failover.

This module provides the LLMClientManager class that owns the registered
providers, tracks which one is primary, and walks an ordered list of
candidates for every completion until one of them produces content.
Candidates are tried strictly one after another; only health checks run
concurrently.
"""
import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, AsyncIterator, Deque, Iterable, Sequence, Set

from inference_core.llm.interfaces.llm_provider_interface import (
    LLMProviderInterface,
    LLMRequest,
    LLMResponse,
    TokenChunk,
    ProviderHealth,
    ProviderDescriptor,
    ModelInfo,
    LLMError,
    LLMConnectionError,
    LLMProtocolError,
    LLMConfigurationError,
    LLMExhaustedError,
    MAX_HEALTH_TIMEOUT
)
from inference_core.llm.factory import LLMProviderFactory
from inference_core.llm.context_window import ContextWindowManager
from inference_core.monitoring.structured_logger import LoggingContext, provider_context

# Completions remembered per provider for the rolling throughput average.
THROUGHPUT_WINDOW = 100


@dataclass
class ProviderAttempt:
    """Outcome of trying one candidate for one request."""
    provider_id: str
    success: bool
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    response_time: Optional[float] = None
    response: Optional[LLMResponse] = None
    skipped: bool = False


class LLMClientManager:
    """
    Registry of inference providers with sequential failover.

    The provider map and the primary id are the only mutable shared state.
    Both are replaced wholesale under a lock, so readers always see either
    the old or the new registry, never a half-registered provider.
    """

    def __init__(
        self,
        fallback_chain: Sequence[str] = (),
        context_manager: Optional[ContextWindowManager] = None,
        factory: Optional[LLMProviderFactory] = None,
        health_timeout: float = MAX_HEALTH_TIMEOUT
    ):
        """
        Initialize the client manager.

        Args:
            fallback_chain: Provider ids tried after the primary, in order
            context_manager: Trims conversations to each model's window when set
            factory: Factory used by ``register_provider``
            health_timeout: Upper bound for a single health probe, in seconds
        """
        self.logger = logging.getLogger(__name__)
        self.context_manager = context_manager
        self.factory = factory or LLMProviderFactory()
        self.health_timeout = min(health_timeout, MAX_HEALTH_TIMEOUT)

        self._lock = threading.Lock()
        self._providers: Dict[str, LLMProviderInterface] = {}
        self._primary_id: Optional[str] = None
        self._fallback_chain = self._dedupe(fallback_chain)

        self._model_info: Dict[str, ModelInfo] = {}
        self._throughput: Dict[str, Deque[float]] = {}

        # Providers replaced by re-registration, closed on disconnect
        self._retired: List[LLMProviderInterface] = []
        self._closing: Set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: Any, context_manager: Optional[ContextWindowManager] = None) -> "LLMClientManager":
        """
        Build a manager from the configuration manager.

        Args:
            config: ConfigManager holding descriptors, fallback chain and primary
            context_manager: Context window manager (a default one if omitted)

        Returns:
            Manager with every declared provider registered
        """
        manager = cls(
            fallback_chain=config.fallback_chain,
            context_manager=context_manager or ContextWindowManager(),
            health_timeout=config.health_timeout
        )
        for descriptor in config.get_provider_descriptors():
            manager.register_provider(descriptor)
        if config.primary_provider:
            manager.set_primary(config.primary_provider)
        return manager

    @staticmethod
    def _dedupe(ids: Iterable[str]) -> List[str]:
        seen = set()
        result = []
        for provider_id in ids:
            key = provider_id.lower()
            if key not in seen:
                seen.add(key)
                result.append(provider_id)
        return result

    # Registry

    def register(self, provider: LLMProviderInterface, is_primary: bool = False) -> None:
        """
        Register a provider instance.

        The first registered provider becomes primary unless another one is
        explicitly marked primary later. Registering an existing id replaces it
        and closes the replaced provider.
        """
        key = provider.provider_id.lower()
        with self._lock:
            providers = dict(self._providers)
            replaced = providers.get(key)
            providers[key] = provider
            self._providers = providers
            if is_primary or self._primary_id is None:
                self._primary_id = provider.provider_id
            self._model_info.pop(key, None)
        if replaced is not None and replaced is not provider:
            self._retire(replaced)
        self.logger.info(
            f"Registered provider '{provider.provider_id}'"
            f"{' as primary' if is_primary else ''}"
        )

    def _retire(self, provider: LLMProviderInterface) -> None:
        """Close a replaced provider now if an event loop is running, otherwise on ``disconnect``."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug(f"Deferring disconnect of replaced provider '{provider.provider_id}'")
            self._retired.append(provider)
            return
        task = loop.create_task(self._disconnect_provider(provider))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def register_provider(
        self,
        descriptor: ProviderDescriptor,
        is_primary: bool = False
    ) -> LLMProviderInterface:
        """
        Create a provider from its descriptor and register it.

        Args:
            descriptor: Provider descriptor or configuration mapping
            is_primary: Whether the new provider becomes primary

        Returns:
            The registered provider

        Raises:
            LLMConfigurationError: If the descriptor names an unsupported backend
        """
        provider = self.factory.create_provider(descriptor)
        self.register(provider, is_primary=is_primary)
        return provider

    def set_primary(self, provider_id: str) -> None:
        """
        Make a registered provider the primary.

        Raises:
            LLMConfigurationError: If no provider is registered under the id
        """
        with self._lock:
            provider = self._providers.get(provider_id.lower())
            if provider is None:
                raise LLMConfigurationError(f"Cannot set primary: provider '{provider_id}' is not registered")
            self._primary_id = provider.provider_id
        self.logger.info(f"Primary provider set to '{provider.provider_id}'")

    @property
    def primary_id(self) -> Optional[str]:
        return self._primary_id

    @property
    def primary(self) -> LLMProviderInterface:
        """
        The current primary provider.

        Raises:
            LLMConfigurationError: If no primary is set
        """
        primary_id = self._primary_id
        provider = self._providers.get(primary_id.lower()) if primary_id else None
        if provider is None:
            raise LLMConfigurationError("No primary LLM provider is configured")
        return provider

    @property
    def fallback_chain(self) -> List[str]:
        return list(self._fallback_chain)

    def get_provider(self, provider_id: str) -> Optional[LLMProviderInterface]:
        return self._providers.get(provider_id.lower())

    def is_registered(self, provider_id: str) -> bool:
        return provider_id.lower() in self._providers

    def get_provider_ids(self) -> List[str]:
        """Ids of all registered providers, in registration order."""
        return [provider.provider_id for provider in self._providers.values()]

    def build_candidates(self, preferred_provider_id: Optional[str] = None) -> List[LLMProviderInterface]:
        """
        Build the ordered candidate list for one request.

        Order is preferred provider (if any), primary, then the fallback chain,
        each provider at most once. Unregistered ids are skipped with a warning.

        Args:
            preferred_provider_id: Provider to try first, usually chosen by the router

        Returns:
            Providers to try, in order
        """
        providers = self._providers
        primary_id = self._primary_id

        ordered_ids: List[str] = []
        if preferred_provider_id:
            ordered_ids.append(preferred_provider_id)
        if primary_id:
            ordered_ids.append(primary_id)
        ordered_ids.extend(self._fallback_chain)

        candidates = []
        for provider_id in self._dedupe(ordered_ids):
            provider = providers.get(provider_id.lower())
            if provider is None:
                self.logger.warning(f"Provider '{provider_id}' is not registered; skipping it")
                continue
            candidates.append(provider)
        return candidates

    # Completion

    async def _probe(self, provider: LLMProviderInterface) -> ProviderHealth:
        """Probe one provider, bounded by the health timeout. Failures read as unreachable."""
        try:
            return await asyncio.wait_for(provider.probe_health(), timeout=self.health_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Health probe for '{provider.provider_id}' timed out after {self.health_timeout}s"
            )
        except Exception as e:
            self.logger.warning(f"Health probe for '{provider.provider_id}' failed: {e}")
        return ProviderHealth.unreachable()

    async def _prepare_request(self, provider: LLMProviderInterface, request: LLMRequest) -> LLMRequest:
        """Fit the request into the provider's context window, if a context manager is set."""
        if self.context_manager is None:
            return request

        key = provider.provider_id.lower()
        model_info = self._model_info.get(key)
        if model_info is None:
            model_info = await provider.describe_model()
            if model_info.is_loaded:
                self._model_info[key] = model_info
        return self.context_manager.fit_request(request, model_info)

    def _record_throughput(self, provider_id: str, tokens_per_second: float) -> None:
        if tokens_per_second <= 0:
            return
        samples = self._throughput.setdefault(provider_id.lower(), deque(maxlen=THROUGHPUT_WINDOW))
        samples.append(tokens_per_second)

    def get_average_throughput(self, provider_id: str) -> Optional[float]:
        """Rolling average tokens per second over recent successful completions."""
        samples = self._throughput.get(provider_id.lower())
        if not samples:
            return None
        return sum(samples) / len(samples)

    def _unhealthy_attempt(self, provider_id: str, health: ProviderHealth) -> ProviderAttempt:
        reason = "unreachable" if not health.reachable else "model not loaded"
        self.logger.warning(f"Skipping provider '{provider_id}': {reason}")
        return ProviderAttempt(
            provider_id=provider_id,
            success=False,
            error=f"Provider {reason}",
            exception=LLMConnectionError(f"Provider '{provider_id}' is {reason}", provider_id=provider_id),
            skipped=True
        )

    async def _try_provider(self, provider: LLMProviderInterface, request: LLMRequest) -> ProviderAttempt:
        """
        Try a completion with one candidate.

        Args:
            provider: Candidate provider
            request: Canonical request

        Returns:
            ProviderAttempt describing the outcome; only cancellation propagates
        """
        provider_id = provider.provider_id
        with provider_context(provider_id):
            health = await self._probe(provider)
            if not health.is_healthy:
                return self._unhealthy_attempt(provider_id, health)

            start_time = time.time()
            try:
                prepared = await self._prepare_request(provider, request)
                response = await provider.complete(prepared)
            except asyncio.TimeoutError as e:
                error_msg = "Completion timed out"
                self.logger.warning(f"{provider_id}: {error_msg}")
                return ProviderAttempt(provider_id, False, error=error_msg, exception=e)
            except LLMError as e:
                error_msg = f"{type(e).__name__}: {e}"
                self.logger.warning(f"{provider_id}: {error_msg}")
                return ProviderAttempt(provider_id, False, error=error_msg, exception=e)
            except Exception as e:
                error_msg = f"Unexpected error: {e}"
                self.logger.error(f"{provider_id}: {error_msg}")
                return ProviderAttempt(provider_id, False, error=error_msg, exception=e)

            response_time = time.time() - start_time

            if not response.content or not response.content.strip():
                error_msg = "Provider returned empty content"
                self.logger.warning(f"{provider_id}: {error_msg}")
                return ProviderAttempt(
                    provider_id,
                    False,
                    error=error_msg,
                    exception=LLMProtocolError(error_msg, provider_id=provider_id),
                    response_time=response_time
                )

            self._record_throughput(provider_id, response.usage.tokens_per_second)
            self.logger.debug(f"Completion succeeded with {provider_id} in {response_time:.2f}s")
            return ProviderAttempt(
                provider_id,
                True,
                response_time=response_time,
                response=response
            )

    def _exhausted(self, attempts: List[ProviderAttempt]) -> LLMExhaustedError:
        attempted = [attempt.provider_id for attempt in attempts]
        details = "; ".join(f"{a.provider_id}: {a.error}" for a in attempts)
        self.logger.error(f"All LLM providers failed: {details}")
        return LLMExhaustedError(attempted, attempts)

    @staticmethod
    def _last_cause(attempts: List[ProviderAttempt]) -> Optional[BaseException]:
        for attempt in reversed(attempts):
            if attempt.exception is not None:
                return attempt.exception
        return None

    async def complete_with_fallback(
        self,
        request: LLMRequest,
        preferred_provider_id: Optional[str] = None
    ) -> LLMResponse:
        """
        Complete a request, failing over across candidates.

        Args:
            request: Canonical request
            preferred_provider_id: Provider to try before the primary

        Returns:
            The first non-empty response. ``metadata`` carries ``provider_id``
            and ``attempted_providers``.

        Raises:
            LLMConfigurationError: If there is no candidate at all
            LLMExhaustedError: If every candidate failed
        """
        candidates = self.build_candidates(preferred_provider_id)
        if not candidates:
            raise LLMConfigurationError("No registered LLM providers to complete the request")

        attempts: List[ProviderAttempt] = []
        with LoggingContext() as context:
            for provider in candidates:
                attempt = await self._try_provider(provider, request)
                attempts.append(attempt)

                if attempt.success:
                    response = attempt.response
                    response.metadata['provider_id'] = provider.provider_id
                    response.metadata['attempted_providers'] = [a.provider_id for a in attempts]
                    response.metadata['request_id'] = context.request_id
                    if len(attempts) > 1:
                        self.logger.info(
                            f"Request served by fallback provider '{provider.provider_id}' "
                            f"after {len(attempts) - 1} failed attempt(s)"
                        )
                    return response

            raise self._exhausted(attempts) from self._last_cause(attempts)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Complete a request starting from the primary provider."""
        return await self.complete_with_fallback(request)

    async def complete_streaming(
        self,
        request: LLMRequest,
        preferred_provider_id: Optional[str] = None
    ) -> AsyncIterator[TokenChunk]:
        """
        Stream a completion, failing over until the first chunk arrives.

        Once a provider has produced its first chunk the stream is committed to
        it, and later transport errors propagate to the caller.

        Args:
            request: Canonical request
            preferred_provider_id: Provider to try before the primary

        Yields:
            Token chunks in emission order; the last one is final

        Raises:
            LLMConfigurationError: If there is no candidate at all
            LLMExhaustedError: If no candidate produced a first chunk
        """
        candidates = self.build_candidates(preferred_provider_id)
        if not candidates:
            raise LLMConfigurationError("No registered LLM providers to stream the request")

        attempts: List[ProviderAttempt] = []
        for provider in candidates:
            provider_id = provider.provider_id
            health = await self._probe(provider)
            if not health.is_healthy:
                attempts.append(self._unhealthy_attempt(provider_id, health))
                continue

            stream = None
            try:
                prepared = await self._prepare_request(provider, request)
                stream = provider.complete_streaming(prepared)
                first = await stream.__anext__()
            except asyncio.CancelledError:
                if stream is not None:
                    await self._close_stream(stream)
                raise
            except StopAsyncIteration:
                first = None
                failure = LLMProtocolError("Stream ended without output", provider_id=provider_id)
                self.logger.warning(f"{provider_id}: stream ended without output")
            except (LLMError, asyncio.TimeoutError) as e:
                first, failure = None, e
                self.logger.warning(f"{provider_id}: stream failed before first chunk: {e}")
            except Exception as e:
                first, failure = None, e
                self.logger.error(f"{provider_id}: unexpected error opening stream: {e}")

            if first is not None and first.is_final and not first.text.strip():
                failure = LLMProtocolError("Provider returned empty content", provider_id=provider_id)
                first = None

            if first is None:
                if stream is not None:
                    await self._close_stream(stream)
                attempts.append(ProviderAttempt(provider_id, False, error=str(failure), exception=failure))
                continue

            self.logger.info(f"Streaming completion from '{provider_id}'")
            try:
                chunk = first
                yield chunk
                while not chunk.is_final:
                    chunk = await stream.__anext__()
                    yield chunk
            except StopAsyncIteration:
                pass
            finally:
                await self._close_stream(stream)
            if chunk.is_final and chunk.usage is not None:
                self._record_throughput(provider_id, chunk.usage.tokens_per_second)
            return

        raise self._exhausted(attempts) from self._last_cause(attempts)

    @staticmethod
    async def _close_stream(stream: Any) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    # Health and lifecycle

    async def check_all_health(self) -> Dict[str, ProviderHealth]:
        """
        Probe every registered provider concurrently.

        Returns:
            Health per provider id, with recent throughput merged in. A provider
            that fails its probe is reported unreachable rather than raising.
        """
        providers = list(self._providers.values())
        results = await asyncio.gather(*(self._probe(provider) for provider in providers))

        status = {}
        for provider, health in zip(providers, results):
            status[provider.provider_id] = health.with_throughput(
                self.get_average_throughput(provider.provider_id)
            )
        return status

    async def prepare_models(self) -> Dict[str, bool]:
        """
        Ensure models are loaded for every provider configured with ``auto_pull``.

        Returns:
            Whether each such provider's model is available afterwards
        """
        results = {}
        for provider in list(self._providers.values()):
            if not provider.descriptor.auto_pull:
                continue
            try:
                results[provider.provider_id] = await provider.ensure_model_loaded()
            except LLMError as e:
                self.logger.error(f"Failed to prepare model for '{provider.provider_id}': {e}")
                results[provider.provider_id] = False
        return results

    def get_status(self) -> Dict[str, Any]:
        """Static registry overview for status displays."""
        return {
            'primary_provider': self._primary_id,
            'fallback_chain': self.fallback_chain,
            'providers': [provider.get_provider_info() for provider in self._providers.values()],
            'throughput': {
                provider.provider_id: self.get_average_throughput(provider.provider_id)
                for provider in self._providers.values()
            }
        }

    async def _disconnect_provider(self, provider: LLMProviderInterface) -> None:
        try:
            await provider.disconnect()
        except Exception as e:
            self.logger.error(f"Error disconnecting from {provider.provider_id}: {e}")

    async def disconnect(self) -> None:
        """Close every provider's network resources, replaced ones included."""
        retired, self._retired = self._retired, []
        for provider in retired + list(self._providers.values()):
            await self._disconnect_provider(provider)
        if self._closing:
            await asyncio.gather(*list(self._closing))
        self.logger.info(f"Disconnected from {len(self._providers)} providers")
