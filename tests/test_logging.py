"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from xianfeast.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    MaxLevelFilter,
    get_log_context,
    get_logger,
    get_logging_config,
    setup_logging,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        record = make_record("Rate limit exceeded")
        record.request_id = "req-1"
        record.client_ip = "203.0.113.7"
        record.rate_limit_key = "auth:203.0.113.7"
        record.duration_ms = 1.5

        data = json.loads(JSONFormatter().format(record))

        assert data["request_id"] == "req-1"
        assert data["client_ip"] == "203.0.113.7"
        assert data["rate_limit_key"] == "auth:203.0.113.7"
        assert data["duration_ms"] == 1.5
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        record = make_record("Maintenance removed items")
        record.removed = {"orders": 2}

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["removed"] == {"orders": 2}

    def test_context_defaults_not_emitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "request_id" not in data
        assert "extra" not in data

    def test_json_format_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text

    def test_json_format_unicode(self):
        data = json.loads(JSONFormatter().format(make_record("肉夹馍 sold out")))
        assert data["message"] == "肉夹馍 sold out"


class TestContextFilter:
    def test_adds_default_fields(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        for field in ("request_id", "client_ip", "rate_limit_key", "cache", "path", "method"):
            assert hasattr(record, field)

    def test_preserves_existing_values(self):
        record = make_record()
        record.client_ip = "198.51.100.1"

        ContextFilter().filter(record)

        assert record.client_ip == "198.51.100.1"
        assert record.request_id is None


class TestMaxLevelFilter:
    def test_passes_records_below_max(self):
        f = MaxLevelFilter("ERROR")

        assert f.filter(make_record(level=logging.WARNING)) is True
        assert f.filter(make_record(level=logging.ERROR)) is False
        assert f.filter(make_record(level=logging.CRITICAL)) is False

    def test_console_handler_stops_below_error(self):
        config = get_logging_config()

        assert "below_error" in config["handlers"]["console"]["filters"]
        assert "below_error" not in config["handlers"]["error_console"]["filters"]


class TestGetLoggingConfig:
    def test_default_text_format(self):
        with patch("xianfeast.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"
        assert config["loggers"]["xianfeast"]["level"] == "INFO"

    def test_structured_format(self):
        with patch("xianfeast.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "debug"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"

    def test_json_format(self):
        with patch("xianfeast.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "WARNING"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"

    def test_context_filter_added(self):
        config = get_logging_config()

        assert "context" in config["handlers"]["console"]["filters"]
        assert "context" in config["handlers"]["error_console"]["filters"]


class TestHelpers:
    def test_get_logger_default_name(self):
        assert get_logger().name == "xianfeast"
        assert get_logger("xianfeast.cache").name == "xianfeast.cache"

    def test_log_context_drops_none(self):
        context = get_log_context(client_ip="203.0.113.7", request_id=None, cache="stalls")

        assert context == {"client_ip": "203.0.113.7", "cache": "stalls"}


class TestIntegration:
    def test_json_logging_output(self, capsys):
        with patch("xianfeast.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("xianfeast.integration")
            logger.warning(
                "Auto-blocked client",
                extra=get_log_context(client_ip="192.0.2.20", rate_limit_key="order:u-1"),
            )

        # WARNING goes to stdout only; error_console takes ERROR and above
        data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "WARNING"
        assert data["logger"] == "xianfeast.integration"
        assert data["client_ip"] == "192.0.2.20"
        assert data["rate_limit_key"] == "order:u-1"

    def test_error_printed_once_on_stderr(self, capsys):
        with patch("xianfeast.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("xianfeast.integration")
            logger.info("Caches warmed")
            logger.error("Cache refresh failed")

        captured = capsys.readouterr()

        assert "Caches warmed" in captured.out
        assert "Caches warmed" not in captured.err
        assert "Cache refresh failed" not in captured.out
        assert captured.err.count("Cache refresh failed") == 1
