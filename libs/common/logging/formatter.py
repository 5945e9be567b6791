"""JSON log formatter.

Example output:
    {
        "timestamp": "2025-10-21T10:30:00.000Z",
        "level": "INFO",
        "service": "bff_gateway",
        "trace_id": "5f0c...",
        "message": "Session created",
        "context": {"session_id": "abcd1234...", "subject": "42"}
    }
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Attributes present on every LogRecord; anything else arrived via ``extra``.
_RESERVED_FIELDS = frozenset(
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
        "thread",
        "threadName",
        "taskName",
        "trace_id",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line.

    Fields passed through ``extra={...}`` are grouped under ``context``.
    """

    def __init__(self, service_name: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "trace_id": getattr(record, "trace_id", None),
            "message": record.getMessage(),
        }

        context = self._extract_context(record)
        if context:
            log_entry["context"] = context

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            log_entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(log_entry, default=str)

    def _format_timestamp(self, created: float) -> str:
        dt = datetime.fromtimestamp(created, tz=UTC)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _extract_context(self, record: logging.LogRecord) -> dict[str, Any] | None:
        extra = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED_FIELDS
        }
        return extra or None
