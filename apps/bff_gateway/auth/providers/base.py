"""Delegated identity provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from apps.bff_gateway.auth.session_store import Principal


class IdentityProvider(ABC):
    """Exchanges an authorization artifact for a principal.

    The gateway never sees upstream access tokens beyond this boundary; only
    the resulting principal snapshot is kept in the session.
    """

    name: str = "base"

    @abstractmethod
    async def begin_login(self, state: str) -> str:
        """Return the URL the browser is redirected to in order to log in.

        ``state`` is issued by the gateway and must come back unchanged on
        the callback.
        """

    @abstractmethod
    async def complete_login(self, code: str, state: str) -> Principal:
        """Exchange the callback ``code`` for a principal.

        Raises:
            IdentityProviderError: If the state is unknown or the exchange fails
        """


__all__ = ["IdentityProvider"]
