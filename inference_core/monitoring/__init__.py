"""
Monitoring module for the inference layer.

Provides logging configuration and correlation-ID propagation.
"""

from .structured_logger import (
    StructuredLogger,
    LoggingContext,
    CorrelationIdManager,
    JSONFormatter,
    provider_context,
    get_logger,
    configure_logging
)

__all__ = [
    'StructuredLogger',
    'LoggingContext',
    'CorrelationIdManager',
    'JSONFormatter',
    'provider_context',
    'get_logger',
    'configure_logging'
]
