"""
Unit tests for logging setup.
"""

import json
import logging

import pytest
import structlog

from kiro_adapter.utils.config import LoggingConfig
from kiro_adapter.utils.logging import JSONFormatter, MetricsLogger, setup_logging


@pytest.fixture
def restore_logging():
    """Put root handlers and structlog defaults back after a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


class TestSetupLogging:
    """Test logging configuration."""

    def test_without_directory(self, restore_logging):
        """Test no metrics logger is created without a log directory."""
        assert setup_logging(LoggingConfig(console=False)) is None
        assert logging.getLogger().level == logging.INFO

    def test_metrics_stream(self, temp_dir, restore_logging):
        """Test metric samples land in the JSONL file."""
        metrics = setup_logging(LoggingConfig(level="debug", directory=temp_dir, console=False))

        metrics.log_duration("agent.activation", 12.3456, {"agent_id": "dev"})
        metrics.log_count("agent.activation")
        for handler in metrics.logger.handlers:
            handler.flush()

        lines = (temp_dir / "kiro-adapter-metrics.jsonl").read_text(encoding="utf-8").splitlines()
        first, second = (json.loads(line) for line in lines)
        assert first["metric"] == "agent.activation.duration_ms"
        assert first["value"] == 12.346
        assert first["tags"] == {"agent_id": "dev"}
        assert second["metric"] == "agent.activation.count"
        assert (temp_dir / "kiro-adapter.log").exists()


class TestJSONFormatter:
    """Test the JSON log layout."""

    def test_extras_are_included(self):
        """Test extra record attributes become JSON fields."""
        record = logging.LogRecord("kiro", logging.WARNING, __file__, 1, "agent_skipped", None, None)
        record.agent_id = "dev"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["event"] == "agent_skipped"
        assert entry["level"] == "WARNING"
        assert entry["agent_id"] == "dev"
        assert "lineno" not in entry

    def test_metrics_logger_wraps_a_logger(self):
        """Test the metrics logger keeps the logger it was given."""
        logger = logging.getLogger("kiro-adapter.test-metrics")
        assert MetricsLogger(logger).logger is logger
