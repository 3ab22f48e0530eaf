"""Tests for structured logging."""

import json
import logging
import sys
from io import StringIO

from shellmux.core.logging import ConsoleFormatter, JSONFormatter, LoggerAdapter, get_logger


def _record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="shellmux.services.ssh.manager",
        level=level,
        pathname="/app/manager.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Tests for JSON log formatter."""

    def test_basic_log_format(self):
        parsed = json.loads(JSONFormatter().format(_record()))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "shellmux.services.ssh.manager"
        assert parsed["message"] == "Test message"
        assert parsed["line"] == 42
        assert "timestamp" in parsed

    def test_session_id_lands_in_extra(self):
        record = _record("Shell established")
        record.session_id = "tab-1"

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["extra"]["session_id"] == "tab-1"

    def test_json_formatter_with_exception(self):
        try:
            raise ConnectionResetError("Connection reset by peer")
        except ConnectionResetError:
            exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(_record("Session failed", logging.ERROR, exc_info)))

        assert parsed["exception"]["type"] == "ConnectionResetError"
        assert parsed["exception"]["message"] == "Connection reset by peer"
        assert isinstance(parsed["exception"]["traceback"], list)

    def test_json_formatter_handles_non_serializable(self):
        record = _record()
        record.geometry = object()

        parsed = json.loads(JSONFormatter().format(record))

        assert "object" in parsed["extra"]["geometry"].lower()


class TestConsoleFormatter:
    """Tests for console log formatter."""

    def test_basic_console_format(self):
        output = ConsoleFormatter().format(_record())

        assert "INFO" in output
        assert "shellmux.services.ssh.manager" in output
        assert "Test message" in output

    def test_session_id_prefix(self):
        record = _record("Remote shell exited")
        record.session_id = "tab-7"

        assert "[tab-7] Remote shell exited" in ConsoleFormatter().format(record)

    def test_console_formatter_with_colors(self):
        formatter = ConsoleFormatter()

        for level, color in ConsoleFormatter.COLORS.items():
            output = formatter.format(_record(level=getattr(logging, level)))
            assert color in output, f"Color code missing for {level}"


class TestLoggerAdapter:
    """Tests for LoggerAdapter context injection."""

    def test_adapter_adds_session_context(self):
        base_logger = logging.getLogger("test.adapter")
        base_logger.setLevel(logging.DEBUG)
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        base_logger.addHandler(handler)

        try:
            LoggerAdapter(base_logger, {"session_id": "tab-1"}).info(
                "Superseding existing session", extra={"host": "203.0.113.10"}
            )
            parsed = json.loads(stream.getvalue())
        finally:
            base_logger.removeHandler(handler)

        assert parsed["extra"]["session_id"] == "tab-1"
        assert parsed["extra"]["host"] == "203.0.113.10"


def test_get_logger_returns_named_logger():
    assert get_logger("shellmux.test").name == "shellmux.test"
