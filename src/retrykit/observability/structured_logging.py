"""
Structured logging for retrykit.

JSON-formatted logging with correlation IDs. The retry manager uses the
request id as the correlation id while a call is in flight.

Usage:
    from retrykit.observability import setup_structured_logging, add_correlation_id

    setup_structured_logging(level="INFO", json_format=True)

    with add_correlation_id("retry_1700000000000_ab12cd34e"):
        logger.info("Calling upstream")  # Will include correlation_id
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from retrykit.utils.logging import get_logger

logger = get_logger("retrykit.observability.logging")

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "message",
        "asctime",
        "thread",
        "threadName",
        "taskName",
    }
)


def get_correlation_id() -> str | None:
    """
    Get current correlation ID.

    Returns:
        Correlation ID or None if not set
    """
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for the current context."""
    _correlation_id.set(correlation_id)


@contextmanager
def add_correlation_id(correlation_id: str | None = None) -> Any:
    """
    Context manager to add correlation ID to logs.

    Args:
        correlation_id: Correlation ID (auto-generated if not provided)

    Yields:
        The correlation ID
    """
    cid = correlation_id or str(uuid.uuid4())[:8]
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra=`` on the log call."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Retry events (records carrying an ``event`` field, see log_retry_event)
    get their fields grouped under ``"retry"`` so dashboards can filter on
    ``event`` and read ``retry.delay_ms``, ``retry.attempt`` and so on.
    Other ``extra`` fields stay at the top level.

    Example output::

        {"timestamp": "...", "level": "WARNING", "logger": "retrykit.retry.events",
         "message": "GET /x attempt 1 failed: HTTP 503. Retrying in 500ms...",
         "correlation_id": "retry_1700000000000_ab12cd34e",
         "event": "retry.scheduled", "retry": {"attempt": 1, "delay_ms": 500, ...}}
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_level: bool = True,
        include_logger: bool = True,
        include_correlation_id: bool = True,
        extra_fields: dict[str, Any] | None = None,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_level = include_level
        self.include_logger = include_logger
        self.include_correlation_id = include_correlation_id
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {}
        if self.include_timestamp:
            payload["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat()
        if self.include_level:
            payload["level"] = record.levelname
        if self.include_logger:
            payload["logger"] = record.name
        payload["message"] = record.getMessage()

        correlation_id = get_correlation_id() if self.include_correlation_id else None
        if correlation_id:
            payload["correlation_id"] = correlation_id

        fields = _extra_fields(record)
        event = fields.pop("event", None)
        if event is not None:
            payload["event"] = event
            payload["retry"] = {key: value for key, value in fields.items() if value is not None}
        else:
            payload.update(fields)

        # Source location only helps for problems
        if record.levelno >= logging.WARNING:
            payload["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        payload.update(self.extra_fields)
        return json.dumps(payload, default=str)


# Already part of the message text of every retry event
_MESSAGE_FIELDS = frozenset({"url", "method", "error", "policy"})


class HumanReadableFormatter(logging.Formatter):
    """
    ``HH:MM:SS LEVEL [correlation_id] message  key=value ...``

    Retry events are suffixed with their compact fields, e.g.
    ``retry.scheduled attempt=1 delay_ms=500 status=503``.
    """

    def __init__(self, include_correlation_id: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.include_correlation_id = include_correlation_id

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record, self.datefmt)} {record.levelname:<8} {record.name}"

        correlation_id = get_correlation_id() if self.include_correlation_id else None
        if correlation_id:
            line += f" [{correlation_id}]"
        line += f" {record.getMessage()}"

        fields = _extra_fields(record)
        event = fields.pop("event", None)
        if event is not None:
            pairs = [
                f"{key}={value}"
                for key, value in fields.items()
                if key not in _MESSAGE_FIELDS and value is not None
            ]
            line += "  " + " ".join([event, *pairs])

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = False,
    stream: Any = None,
    extra_fields: dict[str, Any] | None = None,
) -> logging.Handler:
    """
    Route retrykit logs through a structured handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True) or human-readable (False)
        stream: Output stream (defaults to sys.stderr)
        extra_fields: Extra fields to include in all logs (JSON format only)

    Returns:
        The installed handler
    """
    level_int = getattr(logging, level.upper())
    retrykit_logger = logging.getLogger("retrykit")
    retrykit_logger.setLevel(level_int)

    for handler in retrykit_logger.handlers[:]:
        retrykit_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level_int)

    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter(extra_fields=extra_fields)
    else:
        formatter = HumanReadableFormatter()

    handler.setFormatter(formatter)
    retrykit_logger.addHandler(handler)

    logger.debug(f"Structured logging configured: level={level}, json={json_format}")
    return handler


def log_retry_event(event: str, message: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """
    Emit a retry decision as a structured log record.

    Args:
        event: Event name, e.g. ``retry.scheduled``
        message: Human-readable message
        level: Logging level
        **fields: Structured fields attached to the record
    """
    log = logging.getLogger("retrykit.retry.events")
    log.log(level, message, extra={"event": event, **fields})
