"""Session + CSRF protection layer for the BFF gateway."""

from apps.bff_gateway.auth.authenticator import AuthState, RequestContext, SessionAuthenticator
from apps.bff_gateway.auth.cookie_config import CookieConfig
from apps.bff_gateway.auth.csrf import CsrfGuard
from apps.bff_gateway.auth.session_store import Principal, RedisSessionStore, Session

__all__ = [
    "AuthState",
    "CookieConfig",
    "CsrfGuard",
    "Principal",
    "RedisSessionStore",
    "RequestContext",
    "Session",
    "SessionAuthenticator",
]
