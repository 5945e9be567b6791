"""Cookie attributes for the session, CSRF and login-state cookies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from starlette.responses import Response

from apps.bff_gateway import config


@dataclass(frozen=True)
class CookieConfig:
    """Encapsulates cookie settings derived from environment config."""

    session_cookie_name: str = "session-id"
    csrf_cookie_name: str = "csrf-token"
    login_state_cookie_name: str = "oauth-state"
    login_state_max_age: int = 600
    secure: bool = True
    samesite: str = "lax"
    path: str = "/"
    domain: str | None = None

    @classmethod
    def from_env(cls) -> CookieConfig:
        return cls(
            session_cookie_name=config.SESSION_COOKIE_NAME,
            csrf_cookie_name=config.CSRF_COOKIE_NAME,
            login_state_cookie_name=config.LOGIN_STATE_COOKIE_NAME,
            login_state_max_age=config.OAUTH_STATE_TTL_SECONDS,
            secure=config.COOKIE_SECURE,
            samesite=config.COOKIE_SAMESITE,
            path=config.COOKIE_PATH,
            domain=config.COOKIE_DOMAIN,
        )

    def _flags(self, *, httponly: bool) -> dict[str, Any]:
        flags: dict[str, Any] = {
            "httponly": httponly,
            "secure": self.secure,
            "samesite": self.samesite,
            "path": self.path,
        }
        if self.domain:
            flags["domain"] = self.domain
        return flags

    def get_session_flags(self) -> dict[str, Any]:
        return self._flags(httponly=True)

    def get_csrf_flags(self) -> dict[str, Any]:
        # Client-readable: the front end copies the value into a header.
        return self._flags(httponly=False)

    def get_login_state_flags(self) -> dict[str, Any]:
        # Never strict: the cookie has to ride the provider's redirect back.
        flags = self._flags(httponly=True)
        if self.samesite == "strict":
            flags["samesite"] = "lax"
        return flags

    def session_cookie(self, session_id: str) -> str:
        return _set_cookie_header(self.session_cookie_name, session_id, self.get_session_flags())

    def csrf_cookie(self, wire_token: str) -> str:
        return _set_cookie_header(self.csrf_cookie_name, wire_token, self.get_csrf_flags())

    def login_state_cookie(self, state: str) -> str:
        flags = {**self.get_login_state_flags(), "max_age": self.login_state_max_age}
        return _set_cookie_header(self.login_state_cookie_name, state, flags)

    def expired_session_cookie(self) -> str:
        return _delete_cookie_header(self.session_cookie_name, self.get_session_flags())

    def expired_csrf_cookie(self) -> str:
        return _delete_cookie_header(self.csrf_cookie_name, self.get_csrf_flags())

    def expired_login_state_cookie(self) -> str:
        return _delete_cookie_header(self.login_state_cookie_name, self.get_login_state_flags())


def _set_cookie_header(key: str, value: str, flags: dict[str, Any]) -> str:
    scratch = Response()
    scratch.set_cookie(key=key, value=value, **flags)
    return scratch.headers["set-cookie"]


def _delete_cookie_header(key: str, flags: dict[str, Any]) -> str:
    scratch = Response()
    scratch.delete_cookie(key=key, **flags)
    return scratch.headers["set-cookie"]


__all__ = ["CookieConfig"]
