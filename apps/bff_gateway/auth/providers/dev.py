"""Development identity provider - logs in a configured user without network."""

from __future__ import annotations

from urllib.parse import urlencode

from apps.bff_gateway.auth.providers.base import IdentityProvider
from apps.bff_gateway.auth.session_store import Principal


class DevIdentityProvider(IdentityProvider):
    name = "dev"

    def __init__(
        self,
        subject: str,
        login: str,
        display_name: str,
        email: str,
        callback_path: str = "/login-callback",
    ) -> None:
        self.principal = Principal(
            subject=subject,
            attributes={"login": login, "name": display_name, "email": email, "avatar_url": None},
        )
        self.callback_path = callback_path

    async def begin_login(self, state: str) -> str:
        return f"{self.callback_path}?{urlencode({'code': 'dev', 'state': state})}"

    async def complete_login(self, code: str, state: str) -> Principal:
        return self.principal


__all__ = ["DevIdentityProvider"]
