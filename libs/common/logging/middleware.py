"""ASGI middleware binding a trace ID to each HTTP request.

The ID comes from the ``X-Trace-ID`` request header when present and is
echoed back on the response, including error responses produced further down
the stack.
"""

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from libs.common.logging.context import (
    TRACE_ID_HEADER,
    clear_trace_id,
    generate_trace_id,
    set_trace_id,
)


class ASGITraceIDMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        trace_id_bytes = headers.get(TRACE_ID_HEADER.lower().encode())
        trace_id = trace_id_bytes.decode("latin-1") if trace_id_bytes else generate_trace_id()
        set_trace_id(trace_id)

        async def send_with_trace_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append(TRACE_ID_HEADER, trace_id)
            await send(message)

        try:
            await self.app(scope, receive, send_with_trace_id)
        finally:
            clear_trace_id()
