"""
Structured logging with correlation IDs for the inference layer.

Every completion handled by the client manager runs inside a LoggingContext,
so all log lines emitted while it walks its candidate providers share one
request id, and lines emitted during a single attempt also carry the id of
the provider being tried.
"""

import contextvars
import json
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import structlog


# Context variable for correlation ID
correlation_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)

# Context variable for request ID
request_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)

# Context variable for the provider currently being attempted
provider_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "provider_id", default=None
)


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _context_fields() -> Dict[str, str]:
    fields = {}
    for key, var in (
        ("correlation_id", correlation_id_context),
        ("request_id", request_id_context),
        ("provider_id", provider_id_context),
    ):
        value = var.get()
        if value:
            fields[key] = value
    return fields


class CorrelationIdProcessor:
    """Processor to add correlation, request and provider IDs to log events."""

    def __call__(self, logger, method_name, event_dict):
        event_dict.update(_context_fields())
        return event_dict


class TimestampProcessor:
    """Processor to add consistent timestamps."""

    def __call__(self, logger, method_name, event_dict):
        event_dict["timestamp"] = time.time()
        event_dict["timestamp_iso"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        return event_dict


class ComponentProcessor:
    """Processor to add component information."""

    def __init__(self, component: str):
        self.component = component

    def __call__(self, logger, method_name, event_dict):
        event_dict.setdefault("component", self.component)
        return event_dict


class ThreadInfoProcessor:
    """Processor to add thread information."""

    def __call__(self, logger, method_name, event_dict):
        event_dict["thread_name"] = threading.current_thread().name
        return event_dict


class StructuredLogger:
    """
    Structured logger with correlation ID support.

    Wraps a structlog logger bound to a component name; context variables
    set by LoggingContext are injected into every event.
    """

    def __init__(self, name: str, component: Optional[str] = None, json_output: bool = False):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            component: Component name for logging context
            json_output: Render events as JSON instead of the console format
        """
        self.name = name
        self.component = component or name
        self.json_output = json_output
        self.logger = structlog.wrap_logger(
            logging.getLogger(name),
            processors=self._processors(),
            wrapper_class=structlog.stdlib.BoundLogger,
        )

    def _processors(self):
        renderer = (
            structlog.processors.JSONRenderer()
            if self.json_output
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        return [
            structlog.stdlib.filter_by_level,
            TimestampProcessor(),
            CorrelationIdProcessor(),
            ComponentProcessor(self.component),
            ThreadInfoProcessor(),
            renderer,
        ]

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, error: Optional[BaseException] = None, **kwargs):
        """Log error message with optional exception."""
        if error is not None:
            kwargs.update({"error_type": type(error).__name__, "error_message": str(error)})
        self.logger.error(message, **kwargs)

    def bind(self, **context) -> "StructuredLogger":
        """Create a new logger with additional bound context."""
        bound = StructuredLogger(self.name, self.component, self.json_output)
        bound.logger = self.logger.bind(**context)
        return bound


class CorrelationIdManager:
    """Manager for correlation ID lifecycle."""

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def get_correlation_id() -> Optional[str]:
        return correlation_id_context.get()

    @staticmethod
    def get_request_id() -> Optional[str]:
        return request_id_context.get()

    @staticmethod
    def get_provider_id() -> Optional[str]:
        return provider_id_context.get()


class LoggingContext:
    """
    Context manager scoping correlation and request IDs.

    Values are restored on exit, so contexts nest and concurrent asyncio
    tasks each keep their own IDs.
    """

    def __init__(self, correlation_id: Optional[str] = None, request_id: Optional[str] = None):
        """
        Initialize logging context.

        Args:
            correlation_id: Correlation ID; an outer one is inherited, else one is generated
            request_id: Request ID (generated if not provided)
        """
        self.correlation_id = (
            correlation_id
            or CorrelationIdManager.get_correlation_id()
            or CorrelationIdManager.generate_id()
        )
        self.request_id = request_id or CorrelationIdManager.generate_id()
        self._tokens = []

    def __enter__(self):
        self._tokens = [
            (correlation_id_context, correlation_id_context.set(self.correlation_id)),
            (request_id_context, request_id_context.set(self.request_id)),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


@contextmanager
def provider_context(provider_id: str) -> Iterator[None]:
    """Tag log lines emitted inside the block with the provider being attempted."""
    token = provider_id_context.set(provider_id)
    try:
        yield
    finally:
        provider_id_context.reset(token)


class ContextFilter(logging.Filter):
    """Copy context IDs onto stdlib log records so plain formatters can use them."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _context_fields()
        record.correlation_id = fields.get("correlation_id", "-")
        record.request_id = fields.get("request_id", "-")
        record.provider_id = fields.get("provider_id", "-")
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for standard library logging integration."""

    def format(self, record):
        log_entry: Dict[str, Any] = {
            "timestamp": record.created,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread_name": record.threadName,
        }
        log_entry.update(_context_fields())

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


def get_logger(name: str, component: Optional[str] = None) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name
        component: Component name for context

    Returns:
        Configured structured logger
    """
    return StructuredLogger(name, component)


def configure_logging(log_level: str = "INFO", json_format: bool = False, log_format: Optional[str] = None):
    """
    Configure global logging settings.

    Args:
        log_level: Minimum log level
        json_format: Whether to use JSON formatting
        log_format: Format string for plain-text output
    """
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.addFilter(ContextFilter())

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(log_format or DEFAULT_FORMAT)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
