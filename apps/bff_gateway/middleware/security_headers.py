"""Security headers added to every response.

- Content-Security-Policy: only same-origin resources, no framing
- Strict-Transport-Security: one year, including subdomains (HTTPS only)
- X-Content-Type-Options: nosniff
- X-Frame-Options: DENY, for user agents that ignore frame-ancestors
- Cache-Control: no-store, since responses carry session-bound cookies

Headers already set by a route are left untouched.
"""

from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

DEFAULT_CSP_POLICY = "default-src 'self'; frame-ancestors 'none'"
HSTS_POLICY = "max-age=31536000; includeSubDomains"
NO_STORE = "no-cache, no-store, max-age=0, must-revalidate"


class SecurityHeadersMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        csp_policy: str = DEFAULT_CSP_POLICY,
        enable_hsts: bool = True,
    ) -> None:
        self.app = app
        self.csp_policy = csp_policy
        self.enable_hsts = enable_hsts

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.setdefault("Content-Security-Policy", self.csp_policy)
                headers.setdefault("X-Content-Type-Options", "nosniff")
                headers.setdefault("X-Frame-Options", "DENY")
                headers.setdefault("Cache-Control", NO_STORE)
                if self.enable_hsts:
                    headers.setdefault("Strict-Transport-Security", HSTS_POLICY)
            await send(message)

        await self.app(scope, receive, send_with_headers)


__all__ = ["SecurityHeadersMiddleware"]
