"""GitHub OAuth2 authorization-code login.

1. ``begin_login``: record the gateway-issued state as single-use, build
   the authorize URL
2. ``complete_login``: check the state, exchange the code for an access
   token, fetch the user profile and snapshot it as the principal
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from apps.bff_gateway.auth.exceptions import IdentityProviderError
from apps.bff_gateway.auth.providers.base import IdentityProvider
from apps.bff_gateway.auth.providers.oauth_state import OAuthStateStore
from apps.bff_gateway.auth.session_store import Principal

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
USER_URL = "https://api.github.com/user"


class GitHubIdentityProvider(IdentityProvider):
    name = "github"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        state_store: OAuthStateStore,
        scope: str = "read:user user:email",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.state_store = state_store
        self.scope = scope
        self.timeout = timeout
        self.transport = transport

    async def begin_login(self, state: str) -> str:
        await self.state_store.store_state(state, provider=self.name)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": state,
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def complete_login(self, code: str, state: str) -> Principal:
        pending = await self.state_store.consume_state(state)
        if pending is None or pending.provider != self.name:
            raise IdentityProviderError("Invalid or expired state parameter")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                access_token = await self._exchange_code(client, code)
                profile = await self._fetch_profile(client, access_token)
        except httpx.HTTPStatusError as e:
            logger.error(f"GitHub request failed: HTTP {e.response.status_code}")
            raise IdentityProviderError(
                f"Identity provider returned {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.error(f"GitHub network error: {e}")
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

        subject = profile.get("id")
        if subject is None:
            raise IdentityProviderError("Identity provider profile has no id")
        return Principal(subject=str(subject), attributes=profile)

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> str:
        response = await client.post(
            TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        payload: dict[str, Any] = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            # GitHub reports exchange errors with a 200 and an "error" field
            raise IdentityProviderError(
                f"Token exchange failed: {payload.get('error', 'no access_token')}"
            )
        return str(access_token)

    async def _fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> dict[str, Any]:
        response = await client.get(
            USER_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        response.raise_for_status()
        profile = response.json()
        if not isinstance(profile, dict):
            raise IdentityProviderError("Identity provider profile is not an object")
        return profile


__all__ = ["GitHubIdentityProvider"]
