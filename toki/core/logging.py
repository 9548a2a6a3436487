"""Structured logging configuration for Toki."""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Correlation id: "tick-<n>" inside the tracker loop, request id inside IPC handlers
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_STANDARD_RECORD_KEYS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName",
    "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "correlation_id", "event_type",
    "taskName",
})


class SensitiveDataFilter(logging.Filter):
    """Filter to prevent logging credentials and encryption keys."""

    SENSITIVE_KEYS = {
        "password",
        "token",
        "secret",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "credential",
        "encryption_key",
        "embedding_api_key",
        "access_token",
    }

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter sensitive data from log records."""
        if hasattr(record, "msg"):
            record.msg = self._sanitize(record.msg)
        if hasattr(record, "args") and record.args:
            if isinstance(record.args, dict):
                record.args = self._sanitize(record.args)
            else:
                record.args = tuple(self._sanitize(arg) for arg in record.args)
        for key in list(record.__dict__):
            if key.lower() in self.SENSITIVE_KEYS:
                record.__dict__[key] = "***REDACTED***"
        return True

    def _sanitize(self, obj: Any) -> Any:
        """Recursively sanitize objects to remove sensitive data."""
        if isinstance(obj, dict):
            return {
                k: "***REDACTED***" if str(k).lower() in self.SENSITIVE_KEYS else self._sanitize(v)
                for k, v in obj.items()
            }
        elif isinstance(obj, (list, tuple)):
            return type(obj)(self._sanitize(item) for item in obj)
        elif isinstance(obj, str):
            lower_str = obj.lower()
            for key in self.SENSITIVE_KEYS:
                if key in lower_str and "=" in obj:
                    parts = obj.split("=")
                    if len(parts) >= 2:
                        return f"{parts[0]}=***REDACTED***"
            return obj
        return obj


class StructuredFormatter(logging.Formatter):
    """Formatter that adds the correlation id and event type to each record."""

    def format(self, record: logging.LogRecord) -> str:
        record.correlation_id = correlation_id_var.get() or "-"
        if not hasattr(record, "event_type"):
            record.event_type = "general"

        formatted = super().format(record)

        if record.exc_info and not record.exc_text:
            formatted += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return formatted


class JsonFormatter(logging.Formatter):
    """JSON formatter for machine-readable daemon logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": correlation_id_var.get() or "-",
            "event_type": getattr(record, "event_type", "general"),
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """
    Configure logging for the daemon and CLI-side services.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output logs in JSON format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.addFilter(SensitiveDataFilter())

    if json_logs:
        console_handler.setFormatter(JsonFormatter())
    else:
        format_str = (
            "%(asctime)s | %(levelname)-8s | %(correlation_id)s | "
            "%(name)s:%(funcName)s:%(lineno)d | %(message)s"
        )
        console_handler.setFormatter(StructuredFormatter(format_str))

    root_logger.addHandler(console_handler)

    # Third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def log_error(
    logger: logging.Logger,
    message: str,
    error: BaseException | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Log an error with full stack trace and context.

    Args:
        logger: Logger instance
        message: Error message
        error: Exception instance (optional)
        extra: Additional context data (optional)
    """
    extra_data = dict(extra or {})
    extra_data["event_type"] = "error"

    if error:
        logger.error(
            f"{message}: {error}",
            exc_info=error,
            extra=extra_data,
        )
    else:
        logger.error(message, extra=extra_data)


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation id for the current context."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the correlation id from the current context."""
    return correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation id from the current context."""
    correlation_id_var.set(None)
