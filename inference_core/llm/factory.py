"""
Provider factory for creating inference adapters from descriptors.

This module maps each backend kind to its adapter class and builds
configured provider instances, either one at a time or for every
descriptor declared in the configuration.
"""

import logging
from typing import Dict, Any, List, Type, Union

from inference_core.llm.interfaces.llm_provider_interface import (
    BackendKind,
    LLMProviderInterface,
    ProviderDescriptor,
    LLMConfigurationError
)
from inference_core.llm.providers.ollama.ollama_provider import OllamaLLMProvider
from inference_core.llm.providers.openai.openai_provider import OpenAICompatibleLLMProvider
from inference_core.llm.providers.vllm.vllm_provider import VLLMProvider
from inference_core.llm.providers.llamacpp.llamacpp_provider import LlamaCppLLMProvider


class LLMProviderFactory:
    """
    Factory class for creating provider instances.

    Adapters are looked up by backend kind; additional kinds can be
    registered at runtime.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._providers: Dict[BackendKind, Type[LLMProviderInterface]] = {}
        self._register_providers()

    def _register_providers(self):
        """Register the built-in adapters."""
        self._providers[BackendKind.OLLAMA] = OllamaLLMProvider
        self._providers[BackendKind.VLLM] = VLLMProvider
        self._providers[BackendKind.LLAMA_CPP] = LlamaCppLLMProvider
        self._providers[BackendKind.OPENAI_COMPATIBLE] = OpenAICompatibleLLMProvider

    def register_backend(self, backend: BackendKind, provider_class: Type[LLMProviderInterface]):
        """Register or replace the adapter class for a backend kind."""
        self._providers[backend] = provider_class

    def create_provider(
        self, descriptor: Union[ProviderDescriptor, Dict[str, Any]]
    ) -> LLMProviderInterface:
        """
        Create a provider instance.

        Args:
            descriptor: Provider descriptor, or a configuration mapping to build one from

        Returns:
            Configured provider instance

        Raises:
            LLMConfigurationError: If the backend kind is not supported
        """
        if isinstance(descriptor, dict):
            descriptor = ProviderDescriptor.from_dict(descriptor)

        provider_class = self._providers.get(descriptor.backend)
        if provider_class is None:
            available = [kind.value for kind in self._providers]
            raise LLMConfigurationError(
                f"Unsupported backend '{descriptor.backend.value}' for provider "
                f"'{descriptor.provider_id}'. Available backends: {available}"
            )

        self.logger.info(
            f"Creating {descriptor.backend.value} provider '{descriptor.provider_id}' "
            f"at {descriptor.resolved_base_url}"
        )
        return provider_class(descriptor)

    def create_providers(
        self, descriptors: List[Union[ProviderDescriptor, Dict[str, Any]]]
    ) -> List[LLMProviderInterface]:
        """
        Create providers for every descriptor, in declared order.

        Raises:
            LLMConfigurationError: If any descriptor is invalid or ids repeat
        """
        providers = []
        seen = set()
        for descriptor in descriptors:
            provider = self.create_provider(descriptor)
            key = provider.provider_id.lower()
            if key in seen:
                raise LLMConfigurationError(f"Duplicate provider id '{provider.provider_id}'")
            seen.add(key)
            providers.append(provider)
        self.logger.info(f"Created {len(providers)} providers")
        return providers

    def list_available_backends(self) -> List[str]:
        """
        List all supported backend kinds.

        Returns:
            List of backend names
        """
        return [kind.value for kind in self._providers]

    def is_backend_available(self, backend: Union[BackendKind, str]) -> bool:
        if isinstance(backend, str):
            try:
                backend = BackendKind.parse(backend)
            except ValueError:
                return False
        return backend in self._providers


# Global factory instance
_llm_factory = LLMProviderFactory()


def create_provider(descriptor: Union[ProviderDescriptor, Dict[str, Any]]) -> LLMProviderInterface:
    """
    Create a provider instance using the global factory.

    Args:
        descriptor: Provider descriptor or configuration mapping

    Returns:
        Configured provider instance
    """
    return _llm_factory.create_provider(descriptor)


def list_available_backends() -> List[str]:
    """List all supported backend kinds."""
    return _llm_factory.list_available_backends()


def is_backend_available(backend: Union[BackendKind, str]) -> bool:
    """Check whether an adapter exists for a backend kind."""
    return _llm_factory.is_backend_available(backend)
