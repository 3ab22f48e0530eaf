"""Core logging configuration with structured JSON support."""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

from .config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Every record becomes one JSON object. Context attached through
    ``extra=`` (for example ``session_id``) is nested under ``extra``.
    """

    _reserved_attrs = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "module",
            "msecs",
            "message",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if record.stack_info:
            log_entry["stack_info"] = record.stack_info

        extra = {}
        for key, value in record.__dict__.items():
            if key not in self._reserved_attrs and not key.startswith("_"):
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with colors for development."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors, prefixing the session id when present."""
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        session_id = getattr(record, "session_id", None)
        scope = f"[{session_id}] " if session_id is not None else ""

        formatted = (
            f"{timestamp} - {color}{record.levelname:8}{self.RESET} - "
            f"{record.name} - {scope}{record.getMessage()}"
        )

        if record.exc_info:
            formatted += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return formatted


def setup_logging() -> None:
    """Setup application logging with environment-appropriate formatting.

    In production (ENVIRONMENT=production), uses JSON formatting.
    In development, uses human-readable console formatting with colors.

    The LOG_FORMAT environment variable can override this behavior:
    - LOG_FORMAT=json: Force JSON formatting
    - LOG_FORMAT=console: Force console formatting
    """
    log_level = getattr(logging, settings.log_level.upper())
    log_format = settings.log_format

    if log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    elif log_format == "console":
        formatter = ConsoleFormatter()
    elif settings.environment.lower() == "production":
        formatter = JSONFormatter()
    else:
        formatter = ConsoleFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    # asyncssh logs every channel open/close at INFO
    logging.getLogger("asyncssh").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance with the given name.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Session opened", extra={"session_id": "tab-1"})
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages.

    Example:
        >>> logger = LoggerAdapter(get_logger(__name__), {"session_id": "tab-1"})
        >>> logger.info("Shell opened")  # record carries session_id
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Add extra context to log record."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs
