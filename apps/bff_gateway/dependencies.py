"""Shared dependencies for the BFF gateway.

Uses functools.lru_cache for the singleton pattern; tests replace the
request-scoped getters through ``app.dependency_overrides``.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

import redis.asyncio
from fastapi import Request

from apps.bff_gateway import config
from apps.bff_gateway.auth.authenticator import RequestContext, SessionAuthenticator
from apps.bff_gateway.auth.concurrency import ConcurrencyPolicy
from apps.bff_gateway.auth.cookie_config import CookieConfig
from apps.bff_gateway.auth.csrf import CsrfGuard
from apps.bff_gateway.auth.providers import (
    DevIdentityProvider,
    GitHubIdentityProvider,
    IdentityProvider,
    OAuthStateStore,
)
from apps.bff_gateway.auth.session_store import RedisSessionStore


@lru_cache
def get_redis_client() -> redis.asyncio.Redis:
    """Get Redis client singleton (sessions + OAuth state)."""
    return redis.asyncio.Redis.from_url(config.REDIS_URL, decode_responses=False)


@lru_cache
def get_cookie_config() -> CookieConfig:
    return CookieConfig.from_env()


@lru_cache
def get_csrf_guard() -> CsrfGuard:
    return CsrfGuard(
        cookie_config=get_cookie_config(),
        header_name=config.CSRF_HEADER_NAME,
        form_field=config.CSRF_FORM_FIELD,
    )


@lru_cache
def get_session_store() -> RedisSessionStore:
    return RedisSessionStore(
        redis_client=get_redis_client(),
        encryption_keys=config.get_encryption_keys(),
        idle_timeout=timedelta(minutes=config.SESSION_IDLE_TIMEOUT_MINUTES),
        session_prefix=config.SESSION_KEY_PREFIX,
        subject_prefix=config.SESSION_SUBJECT_PREFIX,
    )


@lru_cache
def get_authenticator() -> SessionAuthenticator:
    """Get session authenticator singleton.

    The singleton also owns the per-subject login locks, so there must be
    exactly one per process.
    """
    return SessionAuthenticator(
        store=get_session_store(),
        csrf_guard=get_csrf_guard(),
        max_sessions_per_subject=config.SESSION_MAX_PER_SUBJECT,
        policy=ConcurrencyPolicy(config.SESSION_CONCURRENCY_POLICY),
    )


@lru_cache
def get_oauth_state_store() -> OAuthStateStore:
    return OAuthStateStore(
        redis_client=get_redis_client(),
        ttl_seconds=config.OAUTH_STATE_TTL_SECONDS,
    )


@lru_cache
def get_identity_provider() -> IdentityProvider:
    """Get the configured identity provider singleton."""
    if config.AUTH_PROVIDER == "dev":
        return DevIdentityProvider(
            subject=config.DEV_SUBJECT,
            login=config.DEV_LOGIN,
            display_name=config.DEV_NAME,
            email=config.DEV_EMAIL,
        )
    return GitHubIdentityProvider(
        client_id=config.OAUTH_CLIENT_ID,
        client_secret=config.OAUTH_CLIENT_SECRET,
        redirect_uri=config.OAUTH_REDIRECT_URI,
        state_store=get_oauth_state_store(),
    )


def get_request_context(request: Request) -> RequestContext:
    """Return the context the request gate attached to this request."""
    context = getattr(request.state, "auth", None)
    if not isinstance(context, RequestContext):
        raise RuntimeError("RequestGate middleware is not installed")
    return context
