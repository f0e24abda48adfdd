"""
Inference orchestration for local coding models.

This module provides the provider contract, four wire-protocol adapters
(Ollama, vLLM, llama.cpp and OpenAI-compatible servers), streaming
decoding, context window fitting, a client manager with health-gated
failover and a rule-based request router.

Features:
- One canonical request/response model across every backend
- Sequential failover from the primary through a configured fallback chain
- Conversation trimming to each model's context window
- Routing by prompt kind and task complexity
"""

from .factory import (
    create_provider,
    list_available_backends,
    is_backend_available,
    LLMProviderFactory
)

from .manager import (
    LLMClientManager,
    ProviderAttempt
)

from .router import (
    RequestRouter,
    RoutingRule,
    COMPLEXITY_LEVELS
)

from .context_window import ContextWindowManager
from .tokens import TokenEstimator
from .streaming import StreamDecoder, StreamFraming
from .benchmark import run_benchmark, BenchmarkResult

from .interfaces.llm_provider_interface import (
    LLMProviderInterface,
    BackendKind,
    PromptKind,
    MessageRole,
    ResponseFormat,
    Message,
    LLMRequest,
    LLMResponse,
    LLMUsage,
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
    # Factory functions
    'create_provider',
    'list_available_backends',
    'is_backend_available',
    'LLMProviderFactory',

    # Orchestration
    'LLMClientManager',
    'ProviderAttempt',
    'RequestRouter',
    'RoutingRule',
    'COMPLEXITY_LEVELS',
    'ContextWindowManager',
    'TokenEstimator',
    'StreamDecoder',
    'StreamFraming',
    'run_benchmark',
    'BenchmarkResult',

    # Interfaces and types
    'LLMProviderInterface',
    'BackendKind',
    'PromptKind',
    'MessageRole',
    'ResponseFormat',
    'Message',
    'LLMRequest',
    'LLMResponse',
    'LLMUsage',
    'TokenChunk',
    'ProviderHealth',
    'ModelInfo',
    'ProviderDescriptor',

    # Errors
    'LLMError',
    'LLMConnectionError',
    'LLMRateLimitError',
    'LLMProtocolError',
    'LLMConfigurationError',
    'LLMCapacityError',
    'LLMExhaustedError',
    'LLMValidationError'
]
