"""
Unit tests for the swapbridge logging system.
"""

import json

import pytest

from swapbridge.config import SecretHandle
from swapbridge.logging import (
    ComponentFilter,
    JSONFormatter,
    LevelFilter,
    LogConfig,
    LogContext,
    LogLevel,
    MemoryHandler,
    RedactionProcessor,
    TextFormatter,
    get_log_manager,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from swapbridge.logging.core import LogEntry


@pytest.fixture
def memory_handler():
    """Install a fresh log manager that records into memory."""
    manager = setup_logging(LogConfig(level=LogLevel.DEBUG, handlers=[]))
    handler = MemoryHandler()
    manager.add_handler("memory", handler)
    yield handler
    shutdown_logging()


def make_entry(message: str = "hello", level: LogLevel = LogLevel.INFO, **context) -> LogEntry:
    return LogEntry(
        timestamp=1_700_000_000.5,
        level=level,
        message=message,
        logger_name="test",
        context=LogContext(**context),
    )


class TestLogConfig:
    """Test LogConfig."""

    def test_from_dict(self):
        """Test creation from a configuration section."""
        config = LogConfig.from_dict({"level": "debug", "format_type": "text", "handlers": ["console"]})
        assert config.level == LogLevel.DEBUG
        assert config.format_type == "text"
        assert config.handlers == ["console"]

    def test_to_dict_never_exports_redaction_values(self):
        """Test redaction values stay out of the exported configuration."""
        config = LogConfig(redact_values=["hunter2-secret"])
        assert "redact_values" not in config.to_dict()


class TestLogger:
    """Test SwapBridgeLogger through the manager."""

    def test_logs_with_context(self, memory_handler):
        """Test context is attached to entries."""
        logger = get_logger("swapbridge.test")
        logger.info("reserved", context=LogContext(component="swap_ledger", swap_key="abc123"))

        logs = memory_handler.get_logs()
        assert len(logs) == 1
        assert logs[0]["message"] == "reserved"
        assert logs[0]["context"]["component"] == "swap_ledger"
        assert logs[0]["context"]["swap_key"] == "abc123"

    def test_level_threshold(self, memory_handler):
        """Test entries below the logger level are dropped."""
        logger = get_logger("swapbridge.quiet")
        logger.set_level(LogLevel.WARNING)
        logger.info("dropped")
        logger.warning("kept")

        assert [log["message"] for log in memory_handler.get_logs()] == ["kept"]

    def test_global_context_is_merged(self, memory_handler):
        """Test the manager context fills in missing fields."""
        get_log_manager().set_context(LogContext(instance_id="node-1"))
        get_logger("swapbridge.test").info("hi", context=LogContext(operation="verify"))

        context = memory_handler.get_logs()[0]["context"]
        assert context["instance_id"] == "node-1"
        assert context["operation"] == "verify"

    def test_secrets_are_redacted(self, memory_handler):
        """Test values registered through the secret handle never reach a handler."""
        SecretHandle({"wrapped_signer_key": "super-secret-signer"})
        get_logger("swapbridge.test").error("request failed with key super-secret-signer")

        message = memory_handler.get_logs()[0]["message"]
        assert "super-secret-signer" not in message
        assert "***" in message


class TestRedactionProcessor:
    """Test RedactionProcessor."""

    def test_scrubs_message_extra_and_metadata(self):
        """Test every text field of the entry is scrubbed."""
        processor = RedactionProcessor(["s3cr3t-value"])
        entry = make_entry("token s3cr3t-value")
        entry.extra = {"nested": {"list": ["s3cr3t-value"]}}
        entry.context.metadata = {"auth": "Bearer s3cr3t-value"}

        processed = processor.process(entry)
        assert processed.message == "token ***"
        assert processed.extra == {"nested": {"list": ["***"]}}
        assert processed.context.metadata == {"auth": "Bearer ***"}

    def test_exception_text_is_replaced(self):
        """Test exceptions mentioning a secret are swapped for a scrubbed copy."""
        processor = RedactionProcessor(["s3cr3t-value"])
        entry = make_entry()
        entry.exception = ValueError("bad key s3cr3t-value")

        processed = processor.process(entry)
        assert "s3cr3t-value" not in str(processed.exception)
        assert processed.extra["exception_redacted"] is True

    def test_short_values_are_ignored(self):
        """Test very short values are not registered."""
        processor = RedactionProcessor(["ab"])
        assert processor.process(make_entry("abc")).message == "abc"


class TestFilters:
    """Test log filters."""

    def test_level_filter(self):
        """Test level range filtering."""
        level_filter = LevelFilter(LogLevel.INFO, LogLevel.WARNING)
        assert level_filter.filter(make_entry(level=LogLevel.INFO))
        assert level_filter.filter(make_entry(level=LogLevel.WARNING))
        assert not level_filter.filter(make_entry(level=LogLevel.DEBUG))
        assert not level_filter.filter(make_entry(level=LogLevel.ERROR))

    def test_component_filter(self):
        """Test component filtering."""
        component_filter = ComponentFilter(["coordinator"])
        assert component_filter.filter(make_entry(component="coordinator"))
        assert not component_filter.filter(make_entry(component="api"))


class TestFormatters:
    """Test log formatters."""

    def test_json_formatter(self):
        """Test JSON output."""
        data = json.loads(JSONFormatter().format(make_entry(component="api", swap_key="abc")))
        assert data["message"] == "hello"
        assert data["level"] == "info"
        assert data["context"] == {"component": "api", "swap_key": "abc"}
        assert data["timestamp"].endswith("Z")

    def test_text_formatter(self):
        """Test text output."""
        line = TextFormatter().format(make_entry(component="api", swap_key="abc"))
        assert "[INFO] test: hello" in line
        assert "component=api" in line
        assert "swap=abc" in line
