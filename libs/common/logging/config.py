"""Root logger setup for services.

Example:
    >>> from libs.common.logging.config import configure_logging
    >>> configure_logging(service_name="bff_gateway", log_level="DEBUG")
"""

import logging
import sys

from libs.common.logging.context import get_trace_id
from libs.common.logging.formatter import JSONFormatter


class TraceIDFilter(logging.Filter):
    """Copy the current trace ID onto every record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def configure_logging(service_name: str, log_level: str = "INFO") -> logging.Logger:
    """Install a single stdout JSON handler on the root logger.

    Existing root handlers are removed so repeated calls (tests, reloads) do
    not duplicate output.

    Args:
        service_name: Value emitted in the ``service`` field of every record
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level is not a known level name
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.addFilter(TraceIDFilter())
    root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name)
