"""Double-submit CSRF guard.

The session-bound secret is delivered to the client only in masked form, as a
client-readable cookie re-masked on every response. State-changing requests
must echo a wire token in the ``X-CSRF-Token`` header (or, for plain HTML form
posts, the ``csrf_token`` field); the token is unmasked and compared in
constant time with the secret of the request's session.

A cross-origin page can make the browser send cookies, but it can neither read
the CSRF cookie nor set a custom header, so forged requests carry no valid
token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from fastapi import HTTPException
from starlette.datastructures import MutableHeaders
from starlette.formparsers import MultiPartException
from starlette.requests import Request

from apps.bff_gateway.auth import token_codec
from apps.bff_gateway.auth.client_ip import UNKNOWN_CLIENT
from apps.bff_gateway.auth.cookie_config import CookieConfig

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

RejectReason = Literal["missing", "malformed", "mismatch"]


@dataclass(frozen=True)
class CsrfAccept:
    transport: Literal["header", "form"] | None = None


@dataclass(frozen=True)
class CsrfReject:
    reason: RejectReason


CsrfDecision = CsrfAccept | CsrfReject


def is_safe_method(method: str) -> bool:
    return method.upper() in SAFE_METHODS


def is_form_request(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").lower()
    return content_type.startswith(FORM_CONTENT_TYPES)


class CsrfGuard:
    """Issues the CSRF cookie and validates submitted tokens."""

    def __init__(
        self,
        cookie_config: CookieConfig,
        header_name: str = "X-CSRF-Token",
        form_field: str = "csrf_token",
    ) -> None:
        self.cookie_config = cookie_config
        self.header_name = header_name
        self.form_field = form_field

    @property
    def cookie_name(self) -> str:
        return self.cookie_config.csrf_cookie_name

    def anonymous_secret(self, cookie_token: str | None) -> bytes:
        """Secret for a request without a session.

        Reuses the secret behind a well-formed incoming CSRF cookie so the
        client's token stays valid; otherwise starts a new one.
        """
        recovered = token_codec.unmask(cookie_token)
        if recovered is None:
            return token_codec.generate_secret()
        return recovered

    def attach_token(self, secret: bytes, headers: MutableHeaders) -> None:
        """Append a freshly masked CSRF cookie to outgoing response headers."""
        headers.append("set-cookie", self.cookie_config.csrf_cookie(token_codec.mask(secret)))

    def clear_token(self, headers: MutableHeaders) -> None:
        headers.append("set-cookie", self.cookie_config.expired_csrf_cookie())

    async def validate(
        self,
        request: Request,
        expected_secret: bytes,
        client_ip: str = UNKNOWN_CLIENT,
    ) -> CsrfDecision:
        """Decide whether ``request`` may proceed.

        Safe methods are accepted without looking at any CSRF material.
        """
        if is_safe_method(request.method):
            return CsrfAccept()

        transport: Literal["header", "form"]
        header_token = request.headers.get(self.header_name)
        if header_token is not None:
            token, transport = header_token, "header"
        else:
            token, transport = await self._form_token(request), "form"

        decision = self._check(token, expected_secret, transport)
        if isinstance(decision, CsrfReject):
            logger.warning(
                "CSRF validation rejected",
                extra={
                    "reason": decision.reason,
                    "transport": transport,
                    "method": request.method,
                    "path": request.url.path,
                    "cookie_present": self.cookie_name in request.cookies,
                    "client_ip": client_ip,
                },
            )
        return decision

    def _check(
        self,
        token: str | None,
        expected_secret: bytes,
        transport: Literal["header", "form"],
    ) -> CsrfDecision:
        if not token:
            return CsrfReject(reason="missing")
        recovered = token_codec.unmask(token)
        if recovered is None:
            return CsrfReject(reason="malformed")
        if not token_codec.secrets_match(recovered, expected_secret):
            return CsrfReject(reason="mismatch")
        return CsrfAccept(transport=transport)

    async def _form_token(self, request: Request) -> str | None:
        if not is_form_request(request):
            return None
        try:
            form = await request.form()
        except (MultiPartException, HTTPException) as exc:
            logger.info("Unparseable form body during CSRF check", extra={"error": str(exc)})
            return None
        try:
            value = form.get(self.form_field)
        finally:
            await form.close()
        return value if isinstance(value, str) else None


__all__ = [
    "CsrfAccept",
    "CsrfDecision",
    "CsrfGuard",
    "CsrfReject",
    "SAFE_METHODS",
    "is_form_request",
    "is_safe_method",
]
