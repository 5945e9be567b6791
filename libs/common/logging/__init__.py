"""Structured JSON logging shared by platform services.

Usage:
    # At service startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="bff_gateway", log_level="INFO")

    # Anywhere else
    logger = logging.getLogger(__name__)
    logger.info("Session created", extra={"session_id": "abcd1234..."})
"""

from libs.common.logging.config import configure_logging, get_logger
from libs.common.logging.context import (
    TRACE_ID_HEADER,
    clear_trace_id,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
)
from libs.common.logging.formatter import JSONFormatter
from libs.common.logging.middleware import ASGITraceIDMiddleware

__all__ = [
    "configure_logging",
    "get_logger",
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "TRACE_ID_HEADER",
    "JSONFormatter",
    "ASGITraceIDMiddleware",
]
