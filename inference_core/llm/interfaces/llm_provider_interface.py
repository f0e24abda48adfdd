"""
Abstract interface for local inference backends.

This module defines the canonical request/response model shared by every
backend adapter, the error taxonomy raised across the inference layer, and the
contract each adapter (Ollama, vLLM, llama.cpp, OpenAI-compatible) implements.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Dict, Any, Optional, AsyncIterator, Sequence


class MessageRole(Enum):
    """Roles for conversation messages."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ResponseFormat(Enum):
    """Requested output format of a completion."""
    TEXT = "text"
    JSON = "json"


class BackendKind(Enum):
    """Wire protocol spoken by a configured backend."""
    OLLAMA = "ollama"
    VLLM = "vllm"
    LLAMA_CPP = "llamacpp"
    OPENAI_COMPATIBLE = "openai_compatible"

    @classmethod
    def parse(cls, value: str) -> "BackendKind":
        """Parse a backend name, tolerating case and separator differences."""
        normalized = value.strip().lower().replace("-", "_").replace(".", "")
        aliases = {
            "llama_cpp": cls.LLAMA_CPP,
            "openai": cls.OPENAI_COMPATIBLE,
            "openaicompatible": cls.OPENAI_COMPATIBLE,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


class PromptKind(Enum):
    """Kinds of coding prompts the agent issues, used for routing."""
    GENERATE_ENDPOINT = "generate_endpoint"
    GENERATE_MODEL = "generate_model"
    GENERATE_SERVICE = "generate_service"
    GENERATE_TEST = "generate_test"
    GENERATE_COMPONENT = "generate_component"
    GENERATE_MIGRATION = "generate_migration"
    REFACTOR = "refactor"
    EXPLAIN = "explain"
    REVIEW = "review"
    FIX_COMPILATION_ERROR = "fix_compilation_error"


class LLMError(Exception):
    """Base exception for inference layer errors."""
    pass


class LLMConnectionError(LLMError):
    """Raised when a backend cannot be reached, times out, or answers with a non-success status."""

    def __init__(self, message: str, provider_id: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.provider_id = provider_id
        self.status = status


class LLMRateLimitError(LLMConnectionError):
    """Raised when a backend answers with HTTP 429."""
    pass


class LLMProtocolError(LLMError):
    """Raised when a backend response lacks a mandatory field or cannot be parsed."""

    def __init__(self, message: str, provider_id: Optional[str] = None, payload: Optional[str] = None):
        super().__init__(message)
        self.provider_id = provider_id
        self.payload = payload


class LLMConfigurationError(LLMError):
    """Raised when the provider registry is asked for something it was not configured with."""
    pass


class LLMCapacityError(LLMError):
    """Raised when the context budget cannot hold the minimum required content."""

    def __init__(self, required_tokens: int, available_tokens: int):
        super().__init__(
            f"Context window exceeded: {required_tokens} tokens required, "
            f"{available_tokens} available"
        )
        self.required_tokens = required_tokens
        self.available_tokens = available_tokens


class LLMExhaustedError(LLMError):
    """Raised when every candidate provider failed for a request."""

    def __init__(self, attempted: Sequence[str], attempts: Optional[List[Any]] = None):
        names = ", ".join(attempted) if attempted else "none"
        super().__init__(f"All LLM providers failed. Attempted: {names}")
        self.attempted = list(attempted)
        self.attempts = list(attempts or [])


class LLMValidationError(LLMError):
    """Raised when a canonical request is invalid."""
    pass


@dataclass(frozen=True)
class Message:
    """A message in a conversation with an LLM."""
    role: MessageRole
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(MessageRole.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(MessageRole.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(MessageRole.ASSISTANT, content)

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class LLMRequest:
    """
    Backend-agnostic completion request.

    Validation happens on construction so that adapters can trust every field.
    An empty ``model`` means the serving provider's default model.
    ``prompt_kind`` and ``complexity`` are routing hints and never reach the wire.
    """
    messages: List[Message]
    model: str = ""
    temperature: float = 0.2
    max_tokens: int = 8192
    top_p: float = 0.95
    repetition_penalty: Optional[float] = None
    stop: Optional[List[str]] = None
    response_format: ResponseFormat = ResponseFormat.TEXT
    timeout: Optional[float] = None
    prompt_kind: Optional[PromptKind] = None
    complexity: Optional[str] = None

    def __post_init__(self):
        if not self.messages:
            raise LLMValidationError("Messages cannot be empty")
        if not 0.0 <= self.temperature <= 2.0:
            raise LLMValidationError(f"Temperature must be within [0, 2], got {self.temperature}")
        if self.max_tokens <= 0:
            raise LLMValidationError(f"max_tokens must be positive, got {self.max_tokens}")
        if not 0.0 < self.top_p <= 1.0:
            raise LLMValidationError(f"top_p must be within (0, 1], got {self.top_p}")
        if self.timeout is not None and self.timeout <= 0:
            raise LLMValidationError(f"timeout must be positive, got {self.timeout}")
        object.__setattr__(self, "messages", list(self.messages))

    def with_messages(self, messages: List[Message]) -> "LLMRequest":
        """Return a copy of this request carrying a different message list."""
        return replace(self, messages=list(messages))

    def with_model(self, model: str) -> "LLMRequest":
        return replace(self, model=model)

    def with_max_tokens(self, max_tokens: int) -> "LLMRequest":
        return replace(self, max_tokens=max_tokens)


@dataclass(frozen=True)
class LLMUsage:
    """Token accounting for a completion."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    tokens_per_second: float = 0.0

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: int,
        completion_tokens: int,
        tokens_per_second: float = 0.0
    ) -> "LLMUsage":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            tokens_per_second=tokens_per_second
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'prompt_tokens': self.prompt_tokens,
            'completion_tokens': self.completion_tokens,
            'total_tokens': self.total_tokens,
            'tokens_per_second': self.tokens_per_second
        }


@dataclass
class LLMResponse:
    """Response from an inference backend."""
    content: str
    usage: LLMUsage = field(default_factory=LLMUsage)
    duration: float = 0.0
    finish_reason: Optional[str] = None
    model: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert response to dictionary."""
        return {
            'content': self.content,
            'usage': self.usage.to_dict(),
            'duration': self.duration,
            'finish_reason': self.finish_reason,
            'model': self.model,
            'metadata': self.metadata
        }


@dataclass(frozen=True)
class TokenChunk:
    """A fragment of streamed output. Usage is only carried by the final chunk."""
    text: str
    is_final: bool = False
    usage: Optional[LLMUsage] = None


@dataclass(frozen=True)
class ProviderHealth:
    """Point-in-time health snapshot of a backend."""
    reachable: bool
    model_loaded: bool = False
    active_model: Optional[str] = None
    gpu_utilization_percent: Optional[float] = None
    vram_free_mb: Optional[int] = None
    avg_tokens_per_second: Optional[float] = None

    @property
    def is_healthy(self) -> bool:
        return self.reachable and self.model_loaded

    @classmethod
    def unreachable(cls) -> "ProviderHealth":
        return cls(reachable=False, model_loaded=False)

    def with_gpu_metrics(self, utilization_percent: float, vram_free_mb: int) -> "ProviderHealth":
        return replace(self, gpu_utilization_percent=utilization_percent, vram_free_mb=vram_free_mb)

    def with_throughput(self, tokens_per_second: Optional[float]) -> "ProviderHealth":
        return replace(self, avg_tokens_per_second=tokens_per_second)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'reachable': self.reachable,
            'model_loaded': self.model_loaded,
            'active_model': self.active_model,
            'gpu_utilization_percent': self.gpu_utilization_percent,
            'vram_free_mb': self.vram_free_mb,
            'avg_tokens_per_second': self.avg_tokens_per_second,
            'healthy': self.is_healthy
        }


@dataclass(frozen=True)
class ModelInfo:
    """Metadata about the model a backend serves."""
    model_id: str
    context_window: int
    quantization: str = "unknown"
    parameter_count: int = 0
    vram_usage_mb: int = 0
    is_loaded: bool = False


# Health probes never wait longer than this, whatever the descriptor says.
MAX_HEALTH_TIMEOUT = 15.0


@dataclass
class ProviderDescriptor:
    """Static configuration of one registered backend."""
    provider_id: str
    backend: BackendKind
    host: str = "localhost"
    port: int = 11434
    base_path: str = ""
    base_url: Optional[str] = None
    default_model: str = ""
    api_key_env: Optional[str] = None
    timeout: float = 300.0
    health_timeout: float = MAX_HEALTH_TIMEOUT
    context_window_override: Optional[int] = None
    default_temperature: float = 0.2
    default_max_tokens: int = 8192
    auto_pull: bool = False

    def __post_init__(self):
        if isinstance(self.backend, str):
            self.backend = BackendKind.parse(self.backend)
        self.health_timeout = min(self.health_timeout, MAX_HEALTH_TIMEOUT)

    @property
    def resolved_base_url(self) -> str:
        """Base URL for requests: explicit override, else ``http://host:port{base_path}``."""
        if self.base_url:
            return self.base_url.rstrip('/')
        return f"http://{self.host}:{self.port}{self.base_path}".rstrip('/')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderDescriptor":
        """
        Build a descriptor from a configuration mapping.

        Accepts both ``id`` and ``provider_id``, and ``model`` as an alias for
        ``default_model``. Unknown keys are ignored.
        """
        provider_id = data.get('provider_id') or data.get('id')
        if not provider_id:
            raise LLMConfigurationError("Provider descriptor requires an 'id'")
        backend = data.get('backend') or data.get('type')
        if not backend:
            raise LLMConfigurationError(f"Provider '{provider_id}' requires a 'backend'")
        try:
            backend_kind = BackendKind.parse(str(backend))
        except ValueError:
            raise LLMConfigurationError(f"Provider '{provider_id}' has unknown backend '{backend}'")

        kwargs: Dict[str, Any] = {}
        for key in ('host', 'port', 'base_path', 'base_url', 'api_key_env', 'timeout',
                    'health_timeout', 'context_window_override', 'default_temperature',
                    'default_max_tokens', 'auto_pull'):
            if data.get(key) is not None:
                kwargs[key] = data[key]
        model = data.get('default_model') or data.get('model')
        if model:
            kwargs['default_model'] = model
        return cls(provider_id=str(provider_id), backend=backend_kind, **kwargs)


class LLMProviderInterface(ABC):
    """
    Abstract interface for inference backends.

    Adapters translate the canonical model to and from one wire protocol.
    Every operation is a coroutine; ``complete_streaming`` is an async
    generator whose last chunk is always final and carries usage.
    """

    def __init__(self, descriptor: ProviderDescriptor):
        """
        Initialize the provider.

        Args:
            descriptor: Static configuration of the backend
        """
        self.descriptor = descriptor
        self.logger = logging.getLogger(self.__class__.__module__)

    @property
    def provider_id(self) -> str:
        """Stable identifier this provider is registered under."""
        return self.descriptor.provider_id

    @property
    def model_name(self) -> str:
        return self.descriptor.default_model

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Run a non-streaming completion.

        Args:
            request: Canonical request

        Returns:
            Completed response

        Raises:
            LLMConnectionError: Network failure, timeout or non-success status
            LLMProtocolError: Response lacks the generated content
        """
        pass

    @abstractmethod
    def complete_streaming(self, request: LLMRequest) -> AsyncIterator[TokenChunk]:
        """
        Run a streaming completion.

        Args:
            request: Canonical request

        Yields:
            Token chunks; the last one is final and carries usage

        Raises:
            LLMConnectionError: Transport failure before or during the stream
        """
        pass

    @abstractmethod
    async def probe_health(self) -> ProviderHealth:
        """
        Check reachability and model load state. Never raises for backend failures.

        Returns:
            Health snapshot
        """
        pass

    @abstractmethod
    async def describe_model(self) -> ModelInfo:
        """
        Fetch metadata about the served model. Best effort: never raises for
        backend failures and reports ``is_loaded=False`` when nothing could be read.

        Returns:
            Model information with defaults for anything the backend omits
        """
        pass

    @abstractmethod
    async def ensure_model_loaded(self) -> bool:
        """
        Make sure the configured model is ready to serve.

        Backends that can pull or load models do so; the rest confirm health.

        Returns:
            True if the model is available afterwards, False otherwise
        """
        pass

    async def disconnect(self) -> None:
        """Release network resources held by the provider."""
        return None

    def get_provider_info(self) -> Dict[str, Any]:
        """
        Get information about this provider.

        Returns:
            Provider information dictionary
        """
        return {
            'provider_id': self.provider_id,
            'backend': self.descriptor.backend.value,
            'model': self.model_name,
            'base_url': self.descriptor.resolved_base_url,
            'config': {
                'temperature': self.descriptor.default_temperature,
                'max_tokens': self.descriptor.default_max_tokens,
                'timeout': self.descriptor.timeout
            }
        }
