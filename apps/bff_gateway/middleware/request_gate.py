"""Request gate: the ordered authorization pipeline in front of every route.

Stages run in the order listed in ``RequestGate.stages``:

1. classify the route (public / protected)
2. authenticate the session cookie into a ``RequestContext``, resolving the
   client address behind trusted proxies
3. refuse anonymous access to protected routes (401, or a redirect to the
   login entry point for browser navigations) without looking at CSRF
4. validate the CSRF token of state-changing requests (403 on failure)

Response finalization runs for every response, including rejections: it
applies the cookie changes recorded on the context and re-masks the CSRF
cookie. The context is exposed to route handlers as ``request.state.auth``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from apps.bff_gateway.auth.authenticator import AuthState, RequestContext, SessionAuthenticator
from apps.bff_gateway.auth.client_ip import ClientIpResolver
from apps.bff_gateway.auth.csrf import CsrfReject, is_form_request, is_safe_method
from apps.bff_gateway.auth.exceptions import StoreUnavailableError
from apps.bff_gateway.auth.route_policy import LOGIN_ENTRY_PATH, RouteClass, RoutePolicy

logger = logging.getLogger(__name__)

UNAUTHENTICATED_BODY: dict[str, Any] = {"authenticated": False, "error": "Not authenticated"}
CSRF_REJECTED_BODY: dict[str, Any] = {"error": "csrf_invalid"}
STORE_UNAVAILABLE_BODY: dict[str, Any] = {"error": "session_store_unavailable"}


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Deny:
    status_code: int
    body: dict[str, Any]


@dataclass(frozen=True)
class Redirect:
    location: str


GateDecision = Allow | Deny | Redirect


@dataclass
class GateRequest:
    request: Request
    authenticator: SessionAuthenticator
    route_class: RouteClass | None = None
    context: RequestContext | None = None


Stage = Callable[[GateRequest], Awaitable[GateDecision | None]]


def is_browser_navigation(request: Request) -> bool:
    return request.method in {"GET", "HEAD"} and "text/html" in request.headers.get("accept", "")


class RequestGate:
    """ASGI middleware producing an allow/deny/redirect decision per request."""

    def __init__(
        self,
        app: ASGIApp,
        get_authenticator: Callable[[], SessionAuthenticator],
        route_policy: RoutePolicy | None = None,
        login_path: str = LOGIN_ENTRY_PATH,
        client_ip_resolver: ClientIpResolver | None = None,
    ) -> None:
        self.app = app
        self.get_authenticator = get_authenticator
        self.client_ip_resolver = client_ip_resolver or ClientIpResolver()
        self.route_policy = route_policy or RoutePolicy()
        self.login_path = login_path
        self.stages: tuple[Stage, ...] = (
            self._classify_route,
            self._authenticate,
            self._authorize,
            self._check_csrf,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope.setdefault("state", {})
        body = await self._buffer_form_body(scope, receive)
        if body is not None:
            gate_receive = _replay_receive(body, receive)
            receive = _replay_receive(body, receive)
        else:
            gate_receive = receive

        authenticator = self.get_authenticator()
        gate_request = GateRequest(
            request=Request(scope, gate_receive), authenticator=authenticator
        )
        try:
            decision = await self.decide(gate_request)
        except StoreUnavailableError as exc:
            logger.error(
                "Session store unavailable - refusing request",
                extra={"path": scope.get("path"), "error": str(exc)},
            )
            response = JSONResponse(STORE_UNAVAILABLE_BODY, status_code=503)
            await response(scope, receive, send)
            return

        context = gate_request.context
        if context is None:
            raise RuntimeError("Request gate finished without an authentication context")
        scope["state"]["auth"] = context

        async def send_finalized(message: Message) -> None:
            if message["type"] == "http.response.start":
                self._finalize(authenticator, context, MutableHeaders(scope=message))
            await send(message)

        if isinstance(decision, Allow):
            await self.app(scope, receive, send_finalized)
            return

        response = self._render(decision)
        await response(scope, receive, send_finalized)

    async def decide(self, gate_request: GateRequest) -> GateDecision:
        for stage in self.stages:
            decision = await stage(gate_request)
            if decision is not None:
                return decision
        return Allow()

    async def _classify_route(self, gate_request: GateRequest) -> GateDecision | None:
        gate_request.route_class = self.route_policy.classify(gate_request.request.url.path)
        return None

    async def _authenticate(self, gate_request: GateRequest) -> GateDecision | None:
        cookies = gate_request.request.cookies
        cookie_config = gate_request.authenticator.csrf_guard.cookie_config
        gate_request.context = await gate_request.authenticator.authenticate_request(
            session_cookie=cookies.get(cookie_config.session_cookie_name),
            csrf_cookie=cookies.get(cookie_config.csrf_cookie_name),
            client_ip=self.client_ip_resolver.from_scope(gate_request.request.scope),
            login_state_cookie=cookies.get(cookie_config.login_state_cookie_name),
        )
        return None

    async def _authorize(self, gate_request: GateRequest) -> GateDecision | None:
        context = _require_context(gate_request)
        if gate_request.route_class is RouteClass.PUBLIC or context.is_authenticated:
            return None

        context.state = AuthState.REJECTED
        request = gate_request.request
        logger.info(
            "Unauthenticated access to protected route",
            extra={
                "path": request.url.path,
                "method": request.method,
                "client_ip": context.client_ip,
            },
        )
        if is_browser_navigation(request):
            return Redirect(location=self.login_path)
        return Deny(status_code=401, body=UNAUTHENTICATED_BODY)

    async def _check_csrf(self, gate_request: GateRequest) -> GateDecision | None:
        context = _require_context(gate_request)
        outcome = await gate_request.authenticator.csrf_guard.validate(
            gate_request.request, context.csrf_secret, client_ip=context.client_ip
        )
        if isinstance(outcome, CsrfReject):
            context.state = AuthState.REJECTED
            return Deny(status_code=403, body=CSRF_REJECTED_BODY)
        return None

    def _finalize(
        self,
        authenticator: SessionAuthenticator,
        context: RequestContext,
        headers: MutableHeaders,
    ) -> None:
        guard = authenticator.csrf_guard
        cookie_config = guard.cookie_config
        if context.issued_login_state:
            headers.append(
                "set-cookie", cookie_config.login_state_cookie(context.issued_login_state)
            )
        elif context.clear_login_state:
            headers.append("set-cookie", cookie_config.expired_login_state_cookie())

        if context.clear_cookies:
            headers.append("set-cookie", cookie_config.expired_session_cookie())
            guard.clear_token(headers)
            return

        if context.issued_session_id:
            headers.append("set-cookie", cookie_config.session_cookie(context.issued_session_id))
        elif context.stale_session_cookie:
            headers.append("set-cookie", cookie_config.expired_session_cookie())
        guard.attach_token(context.csrf_secret, headers)

    def _render(self, decision: Deny | Redirect) -> Response:
        if isinstance(decision, Redirect):
            return RedirectResponse(url=decision.location, status_code=302)
        return JSONResponse(decision.body, status_code=decision.status_code)

    async def _buffer_form_body(self, scope: Scope, receive: Receive) -> bytes | None:
        """Read a form body up front so the CSRF stage and the route can both parse it."""
        request = Request(scope)
        if is_safe_method(request.method) or not is_form_request(request):
            return None

        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] != "http.request":
                break
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    delivered = False

    async def replay() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _require_context(gate_request: GateRequest) -> RequestContext:
    if gate_request.context is None:
        raise RuntimeError("Authentication stage has not run")
    return gate_request.context


__all__ = [
    "Allow",
    "Deny",
    "GateDecision",
    "GateRequest",
    "Redirect",
    "RequestGate",
    "is_browser_navigation",
]
