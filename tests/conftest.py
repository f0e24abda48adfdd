"""
Shared fixtures for inference core tests.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from inference_core.llm.interfaces.llm_provider_interface import (
    BackendKind,
    LLMProviderInterface,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    Message,
    ModelInfo,
    ProviderDescriptor,
    ProviderHealth
)


@pytest.fixture
def simple_request():
    """A two-message request with default sampling settings."""
    return LLMRequest(
        messages=[
            Message.system("You are a careful Python developer."),
            Message.user("Write a function that reverses a string.")
        ],
        max_tokens=256
    )


@pytest.fixture
def ollama_descriptor():
    return ProviderDescriptor(
        provider_id="local-ollama",
        backend=BackendKind.OLLAMA,
        port=11434,
        default_model="qwen2.5-coder"
    )


@pytest.fixture
def openai_descriptor():
    return ProviderDescriptor(
        provider_id="lm-studio",
        backend=BackendKind.OPENAI_COMPATIBLE,
        port=1234,
        default_model="local-model"
    )


@pytest.fixture
def vllm_descriptor():
    return ProviderDescriptor(
        provider_id="gpu-box",
        backend=BackendKind.VLLM,
        port=8000,
        default_model="Qwen/Qwen2.5-Coder-32B-Instruct"
    )


@pytest.fixture
def llamacpp_descriptor():
    return ProviderDescriptor(
        provider_id="llama-server",
        backend=BackendKind.LLAMA_CPP,
        port=8080,
        default_model="codellama-13b"
    )


def make_provider(
    provider_id,
    content="generated code",
    error=None,
    health=None,
    model_info=None,
    auto_pull=False,
    tokens_per_second=20.0
):
    """
    Build a mock provider.

    Args:
        provider_id: Id the provider reports
        content: Completion content returned on success
        error: Exception raised by ``complete`` instead of returning
        health: Health returned by ``probe_health`` (healthy by default)
        model_info: Model info returned by ``describe_model``
        auto_pull: Descriptor ``auto_pull`` flag
        tokens_per_second: Throughput reported in usage
    """
    provider = Mock(spec=LLMProviderInterface)
    provider.provider_id = provider_id
    provider.model_name = "test-model"
    provider.descriptor = ProviderDescriptor(
        provider_id=provider_id, backend=BackendKind.OLLAMA, auto_pull=auto_pull
    )
    provider.probe_health = AsyncMock(
        return_value=health or ProviderHealth(reachable=True, model_loaded=True, active_model="test-model")
    )
    if error is not None:
        provider.complete = AsyncMock(side_effect=error)
    else:
        provider.complete = AsyncMock(return_value=LLMResponse(
            content=content,
            usage=LLMUsage.from_counts(5, 10, tokens_per_second),
            model="test-model"
        ))
    provider.describe_model = AsyncMock(
        return_value=model_info or ModelInfo(model_id="test-model", context_window=32768, is_loaded=True)
    )
    provider.ensure_model_loaded = AsyncMock(return_value=True)
    provider.disconnect = AsyncMock()
    provider.get_provider_info = Mock(return_value={'provider_id': provider_id})
    return provider


@pytest.fixture
def provider_builder():
    """Factory fixture returning ``make_provider``."""
    return make_provider
