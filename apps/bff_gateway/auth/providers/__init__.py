"""Identity provider implementations."""

from apps.bff_gateway.auth.providers.base import IdentityProvider
from apps.bff_gateway.auth.providers.dev import DevIdentityProvider
from apps.bff_gateway.auth.providers.github import GitHubIdentityProvider
from apps.bff_gateway.auth.providers.oauth_state import OAuthStateStore

__all__ = [
    "DevIdentityProvider",
    "GitHubIdentityProvider",
    "IdentityProvider",
    "OAuthStateStore",
]
