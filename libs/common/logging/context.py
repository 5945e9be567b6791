"""Trace ID propagation for request correlation.

A trace ID is read from the ``X-Trace-ID`` request header (or generated) and
stored in a context variable so every log record emitted while handling the
request carries it.
"""

import contextvars
import uuid

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

TRACE_ID_HEADER = "X-Trace-ID"


def generate_trace_id() -> str:
    """Return a new UUID4 trace ID."""
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Bind ``trace_id`` to the current context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    _trace_id_var.set(None)
