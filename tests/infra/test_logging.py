"""
Tests for Infrastructure Logging
"""

import json

import pytest
import structlog

from agentsdk.infra.logging import configure_logging, get_logger


def json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line.startswith("{")]


class TestConfigureLogging:
    """Test configure_logging function."""

    @pytest.fixture(autouse=True)
    def reset_logging(self):
        yield
        structlog.reset_defaults()

    def test_configure_logging_default(self):
        configure_logging()
        assert get_logger("default") is not None

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR", "info", "INVALID"])
    def test_configure_logging_levels(self, level):
        """Known levels in any case are accepted; unknown ones fall back to INFO."""
        configure_logging(log_level=level)
        assert structlog.get_logger() is not None

    def test_json_format_renders_event_and_context(self, capsys):
        configure_logging(log_level="INFO", json_format=True)
        get_logger("agentsdk.test").info("tool_executed", tool="search", duration_ms=12)

        records = json_lines(capsys.readouterr().err)
        assert records[-1]["event"] == "tool_executed"
        assert records[-1]["tool"] == "search"
        assert records[-1]["duration_ms"] == 12
        assert records[-1]["level"] == "info"
        assert records[-1]["logger"] == "agentsdk.test"
        assert "timestamp" in records[-1]

    def test_level_filters_lower_events(self, capsys):
        configure_logging(log_level="WARNING", json_format=True)
        logger = get_logger("agentsdk.test")
        logger.info("hidden")
        logger.warning("shown")

        events = [r["event"] for r in json_lines(capsys.readouterr().err)]
        assert "hidden" not in events
        assert "shown" in events

    def test_invalid_level_falls_back_to_info(self, capsys):
        configure_logging(log_level="INVALID", json_format=True)
        logger = get_logger("agentsdk.test")
        logger.debug("too_low")
        logger.info("visible")

        events = [r["event"] for r in json_lines(capsys.readouterr().err)]
        assert events == ["visible"]

    def test_configure_logging_multiple_calls(self, capsys):
        configure_logging(log_level="INFO")
        configure_logging(log_level="DEBUG", json_format=True)
        get_logger("agentsdk.test").debug("after_reconfigure")

        events = [r["event"] for r in json_lines(capsys.readouterr().err)]
        assert events == ["after_reconfigure"]


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_returns_logger(self):
        logger = get_logger("test_logger")
        assert logger.bind is not None

    def test_get_logger_can_log(self):
        logger = get_logger("test_logger")
        logger.info("test message", extra_key="extra_value")

    def test_bound_context(self):
        logger = get_logger("test_logger").bind(agent="root")
        logger.info("bound")
