"""Session authenticator: the per-request authentication state machine.

States:
    ANONYMOUS       no session (or the presented one is unknown/expired)
    AUTHENTICATING  mid OAuth exchange, handled by the identity provider
    AUTHENTICATED   session resolved and touched
    REJECTED        refused by the request gate

The ``RequestContext`` produced here is threaded explicitly from the request
gate to route handlers and back to response finalization; it records every
cookie change the response must carry.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from apps.bff_gateway.auth.client_ip import UNKNOWN_CLIENT
from apps.bff_gateway.auth.concurrency import ConcurrencyPolicy
from apps.bff_gateway.auth.csrf import CsrfGuard
from apps.bff_gateway.auth.exceptions import SessionLimitExceededError
from apps.bff_gateway.auth.session_store import (
    Principal,
    RedisSessionStore,
    Session,
    mask_session_id,
)

logger = logging.getLogger(__name__)


class AuthState(StrEnum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass
class RequestContext:
    """Authentication state of one request and the cookies it must emit."""

    state: AuthState
    csrf_secret: bytes
    session: Session | None = None
    presented_session_id: str | None = None
    issued_session_id: str | None = None
    clear_cookies: bool = False
    stale_session_cookie: bool = False
    client_ip: str = UNKNOWN_CLIENT
    login_state_cookie: str | None = None
    issued_login_state: str | None = None
    clear_login_state: bool = False

    @property
    def principal(self) -> Principal | None:
        return self.session.principal if self.session else None

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED and self.session is not None


class SessionAuthenticator:
    """Orchestrates login completion, request authentication and logout."""

    def __init__(
        self,
        store: RedisSessionStore,
        csrf_guard: CsrfGuard,
        max_sessions_per_subject: int = 1,
        policy: ConcurrencyPolicy = ConcurrencyPolicy.EVICT_OLDEST,
    ) -> None:
        if max_sessions_per_subject < 1:
            raise ValueError("max_sessions_per_subject must be at least 1")
        self.store = store
        self.csrf_guard = csrf_guard
        self.max_sessions_per_subject = max_sessions_per_subject
        self.policy = policy

    async def authenticate_request(
        self,
        session_cookie: str | None,
        csrf_cookie: str | None,
        client_ip: str = UNKNOWN_CLIENT,
        login_state_cookie: str | None = None,
    ) -> RequestContext:
        """Resolve the session cookie into an authenticated or anonymous context.

        Raises:
            StoreUnavailableError: If the session backend is unreachable
        """
        if session_cookie:
            loaded = await self.store.get(session_cookie)
            session = await self.store.touch(loaded) if loaded is not None else None
            if session is not None:
                return RequestContext(
                    state=AuthState.AUTHENTICATED,
                    csrf_secret=session.csrf_secret_bytes,
                    session=session,
                    presented_session_id=session_cookie,
                    client_ip=client_ip,
                    login_state_cookie=login_state_cookie,
                )

        return RequestContext(
            state=AuthState.ANONYMOUS,
            csrf_secret=self.csrf_guard.anonymous_secret(csrf_cookie),
            presented_session_id=session_cookie or None,
            stale_session_cookie=bool(session_cookie),
            client_ip=client_ip,
            login_state_cookie=login_state_cookie,
        )

    def start_login(self, context: RequestContext) -> str:
        """Issue the OAuth ``state`` for a new login and bind it to this browser.

        The state travels to the provider in the authorize URL and is also set
        as an HttpOnly cookie on the redirect, so the callback can prove it
        arrived in the browser that started the login.
        """
        state = secrets.token_urlsafe(32)
        context.issued_login_state = state
        return state

    def verify_login_state(self, context: RequestContext, state: str) -> bool:
        """True when ``state`` matches the state cookie of this browser.

        The cookie is single-use and is cleared whatever the outcome.
        """
        context.clear_login_state = True
        bound = context.login_state_cookie
        if bound and hmac.compare_digest(bound.encode("utf-8"), state.encode("utf-8")):
            return True

        logger.warning(
            "OAuth callback state not bound to this browser",
            extra={"cookie_present": bool(bound), "client_ip": context.client_ip},
        )
        return False

    async def complete_login(self, context: RequestContext, principal: Principal) -> Session:
        """Bind ``principal`` to a brand-new session.

        Any pre-login session identifier is discarded, never reused. When the
        subject is at its session limit, the oldest sessions are evicted
        (evict-oldest) or the login is refused (reject-new). The
        read-evict-insert sequence runs under the subject's Redis lock, so
        concurrent logins on different workers are serialized too.

        Raises:
            SessionLimitExceededError: Limit reached under the reject-new policy
            StoreUnavailableError: If the session backend or the subject lock
                is unavailable
        """
        context.state = AuthState.AUTHENTICATING
        if context.presented_session_id:
            await self.store.invalidate(context.presented_session_id)

        subject = principal.subject
        async with self.store.subject_lock(subject):
            existing = await self.store.list_by_principal(subject)
            overflow = len(existing) - self.max_sessions_per_subject + 1
            if overflow > 0:
                if self.policy is ConcurrencyPolicy.REJECT_NEW:
                    logger.warning(
                        "Login refused - concurrent session limit reached",
                        extra={
                            "subject": subject,
                            "active_sessions": len(existing),
                            "client_ip": context.client_ip,
                        },
                    )
                    context.state = AuthState.REJECTED
                    raise SessionLimitExceededError(
                        f"Subject already holds {len(existing)} active session(s)"
                    )
                for evicted in existing[:overflow]:
                    await self.store.invalidate(evicted.session_id, subject=subject)
                    logger.info(
                        "Session evicted by newer login",
                        extra={
                            "session_id": mask_session_id(evicted.session_id),
                            "subject": subject,
                            "client_ip": context.client_ip,
                        },
                    )
            session = await self.store.create(principal)

        context.state = AuthState.AUTHENTICATED
        context.session = session
        context.csrf_secret = session.csrf_secret_bytes
        context.issued_session_id = session.session_id
        context.stale_session_cookie = False
        context.clear_cookies = False
        return session

    async def logout(self, context: RequestContext) -> None:
        """Invalidate the context's session and mark both cookies for deletion.

        CSRF validation happens in the request gate before this is reached.
        """
        if context.session is not None:
            await self.store.invalidate(
                context.session.session_id,
                subject=context.session.principal.subject,
            )
        context.session = None
        context.issued_session_id = None
        context.state = AuthState.ANONYMOUS
        context.clear_cookies = True


def principal_payload(principal: Principal) -> dict[str, Any]:
    return {
        "authenticated": True,
        "subject": principal.subject,
        "attributes": dict(principal.attributes),
    }


__all__ = [
    "AuthState",
    "RequestContext",
    "SessionAuthenticator",
    "principal_payload",
]
