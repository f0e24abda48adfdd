"""
LLM provider interfaces package.

This package contains the canonical data model, error taxonomy and abstract
provider contract shared by every inference backend adapter.
"""

from .llm_provider_interface import (
    LLMProviderInterface,
    MessageRole,
    Message,
    ResponseFormat,
    BackendKind,
    PromptKind,
    LLMRequest,
    LLMUsage,
    LLMResponse,
    TokenChunk,
    ProviderHealth,
    ModelInfo,
    ProviderDescriptor,
    LLMError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMProtocolError,
    LLMConfigurationError,
    LLMCapacityError,
    LLMExhaustedError,
    LLMValidationError
)

__all__ = [
    'LLMProviderInterface',
    'MessageRole',
    'Message',
    'ResponseFormat',
    'BackendKind',
    'PromptKind',
    'LLMRequest',
    'LLMUsage',
    'LLMResponse',
    'TokenChunk',
    'ProviderHealth',
    'ModelInfo',
    'ProviderDescriptor',
    'LLMError',
    'LLMConnectionError',
    'LLMRateLimitError',
    'LLMProtocolError',
    'LLMConfigurationError',
    'LLMCapacityError',
    'LLMExhaustedError',
    'LLMValidationError'
]
