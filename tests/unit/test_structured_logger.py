"""
Tests for structured logging and correlation ids.
"""

import asyncio
import json
import logging

import pytest

from inference_core.monitoring.structured_logger import (
    ContextFilter,
    CorrelationIdManager,
    JSONFormatter,
    LoggingContext,
    StructuredLogger,
    configure_logging,
    provider_context
)


def _record(message="hello"):
    return logging.LogRecord("inference_core.test", logging.INFO, __file__, 10, message, None, None)


class TestLoggingContext:
    """Correlation and request id scoping."""

    def test_ids_are_set_and_restored(self):
        assert CorrelationIdManager.get_request_id() is None

        with LoggingContext(correlation_id="corr-1", request_id="req-1") as context:
            assert context.request_id == "req-1"
            assert CorrelationIdManager.get_correlation_id() == "corr-1"
            assert CorrelationIdManager.get_request_id() == "req-1"

        assert CorrelationIdManager.get_correlation_id() is None
        assert CorrelationIdManager.get_request_id() is None

    def test_nested_context_inherits_correlation_id(self):
        with LoggingContext(correlation_id="outer"):
            with LoggingContext() as inner:
                assert inner.correlation_id == "outer"
                assert inner.request_id != "outer"
            assert CorrelationIdManager.get_correlation_id() == "outer"

    def test_provider_context(self):
        with provider_context("gpu-box"):
            assert CorrelationIdManager.get_provider_id() == "gpu-box"
        assert CorrelationIdManager.get_provider_id() is None

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_ids(self):
        async def handle(request_id):
            with LoggingContext(request_id=request_id):
                await asyncio.sleep(0)
                return CorrelationIdManager.get_request_id()

        assert await asyncio.gather(handle("a"), handle("b")) == ["a", "b"]


class TestFormatting:
    """Stdlib formatter integration."""

    def test_context_filter_defaults(self):
        record = _record()
        assert ContextFilter().filter(record) is True
        assert record.request_id == "-"
        assert record.provider_id == "-"

    def test_context_filter_copies_ids(self):
        record = _record()
        with LoggingContext(request_id="req-9"), provider_context("local"):
            ContextFilter().filter(record)
        assert record.request_id == "req-9"
        assert record.provider_id == "local"

    def test_json_formatter(self):
        with LoggingContext(request_id="req-7"):
            entry = json.loads(JSONFormatter().format(_record("probe failed")))

        assert entry["message"] == "probe failed"
        assert entry["level"] == "info"
        assert entry["logger"] == "inference_core.test"
        assert entry["request_id"] == "req-7"
        assert "provider_id" not in entry

    def test_configure_logging_installs_one_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("DEBUG", json_format=True)
            configure_logging("WARNING")
            assert len(root.handlers) == 1
            assert root.level == logging.WARNING
            assert any(isinstance(f, ContextFilter) for f in root.handlers[0].filters)
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)


class TestStructuredLogger:
    """structlog-backed logger."""

    def test_json_event_carries_context(self, caplog):
        logger = StructuredLogger("inference_core.test.json", component="health_monitor", json_output=True)
        caplog.set_level(logging.DEBUG, logger="inference_core.test.json")

        with LoggingContext(request_id="req-3"):
            logger.info("poll finished", healthy=2)

        event = json.loads(caplog.records[-1].getMessage())
        assert event["event"] == "poll finished"
        assert event["healthy"] == 2
        assert event["component"] == "health_monitor"
        assert event["request_id"] == "req-3"

    def test_error_records_exception_details(self, caplog):
        logger = StructuredLogger("inference_core.test.error", json_output=True)
        caplog.set_level(logging.DEBUG, logger="inference_core.test.error")

        logger.error("poll failed", error=RuntimeError("boom"))

        event = json.loads(caplog.records[-1].getMessage())
        assert event["error_type"] == "RuntimeError"
        assert event["error_message"] == "boom"
        assert caplog.records[-1].levelno == logging.ERROR

    def test_bind_adds_fields(self, caplog):
        logger = StructuredLogger("inference_core.test.bind", json_output=True).bind(provider="gpu-box")
        caplog.set_level(logging.DEBUG, logger="inference_core.test.bind")

        logger.warning("slow")

        event = json.loads(caplog.records[-1].getMessage())
        assert event["provider"] == "gpu-box"

    def test_level_filtering(self, caplog):
        logger = StructuredLogger("inference_core.test.level")
        caplog.set_level(logging.INFO, logger="inference_core.test.level")

        logger.debug("hidden")
        logger.info("shown")

        messages = [r.getMessage() for r in caplog.records if r.name == "inference_core.test.level"]
        assert len(messages) == 1
        assert "shown" in messages[0]
