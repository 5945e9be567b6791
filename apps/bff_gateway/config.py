"""BFF gateway configuration.

All settings are read once from the environment at import time. Core classes
take their settings as constructor arguments; only ``dependencies`` and
``main`` read this module directly.
"""

from __future__ import annotations

import base64
import ipaddress
import logging
import os
from typing import Literal, cast

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
PROD_LIKE_ENVIRONMENTS = {"prod", "production", "staging"}

# =============================================================================
# Service
# =============================================================================

SERVICE_NAME = "bff_gateway"
SERVICE_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev").lower()
DEBUG = os.getenv("BFF_DEBUG", "false").lower() in _TRUTHY
LOG_LEVEL = os.getenv("BFF_LOG_LEVEL", "INFO").upper()
HOST = os.getenv("BFF_HOST", "0.0.0.0")
PORT = int(os.getenv("BFF_PORT", "8080"))

# =============================================================================
# Redis
# =============================================================================

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/1")

# =============================================================================
# Sessions
# =============================================================================

SESSION_KEY_PREFIX = os.getenv("SESSION_KEY_PREFIX", "bff_session:")
SESSION_SUBJECT_PREFIX = os.getenv("SESSION_SUBJECT_PREFIX", "bff_subject:")
SESSION_IDLE_TIMEOUT_MINUTES = int(os.getenv("SESSION_IDLE_TIMEOUT_MINUTES", "30"))
SESSION_MAX_PER_SUBJECT = int(os.getenv("SESSION_MAX_PER_SUBJECT", "1"))
if SESSION_MAX_PER_SUBJECT < 1:
    raise ValueError("SESSION_MAX_PER_SUBJECT must be at least 1")

ConcurrencyPolicyName = Literal["evict-oldest", "reject-new"]


def _load_concurrency_policy() -> ConcurrencyPolicyName:
    value = os.getenv("SESSION_CONCURRENCY_POLICY", "evict-oldest").lower()
    if value not in {"evict-oldest", "reject-new"}:
        raise ValueError("SESSION_CONCURRENCY_POLICY must be one of: evict-oldest, reject-new")
    return cast(ConcurrencyPolicyName, value)


SESSION_CONCURRENCY_POLICY = _load_concurrency_policy()

SESSION_ENCRYPTION_KEY = os.getenv("SESSION_ENCRYPTION_KEY", "").strip()
SESSION_ENCRYPTION_KEY_PREV = os.getenv("SESSION_ENCRYPTION_KEY_PREV", "").strip()

# =============================================================================
# Cookies + CSRF
# =============================================================================

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session-id")
CSRF_COOKIE_NAME = os.getenv("CSRF_COOKIE_NAME", "csrf-token")
LOGIN_STATE_COOKIE_NAME = os.getenv("LOGIN_STATE_COOKIE_NAME", "oauth-state")
CSRF_HEADER_NAME = os.getenv("CSRF_HEADER_NAME", "X-CSRF-Token")
CSRF_FORM_FIELD = os.getenv("CSRF_FORM_FIELD", "csrf_token")

COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false" if DEBUG else "true").lower() in _TRUTHY
COOKIE_SAMESITE = os.getenv("COOKIE_SAMESITE", "lax").lower()
if COOKIE_SAMESITE not in {"lax", "strict", "none"}:
    raise ValueError("COOKIE_SAMESITE must be one of: lax, strict, none")
COOKIE_PATH = os.getenv("COOKIE_PATH", "/")
COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN", "") or None

# =============================================================================
# Delegated OAuth login
# =============================================================================

AuthProviderName = Literal["github", "dev"]


def _load_auth_provider() -> AuthProviderName:
    value = os.getenv("AUTH_PROVIDER", "github").lower()
    if value not in {"github", "dev"}:
        raise ValueError("AUTH_PROVIDER must be one of: github, dev")
    return cast(AuthProviderName, value)


AUTH_PROVIDER = _load_auth_provider()
OAUTH_CLIENT_ID = os.getenv("OAUTH_CLIENT_ID", "")
OAUTH_CLIENT_SECRET = os.getenv("OAUTH_CLIENT_SECRET", "")
OAUTH_REDIRECT_URI = os.getenv("OAUTH_REDIRECT_URI", "http://localhost:8080/login-callback")
OAUTH_STATE_TTL_SECONDS = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))

LOGIN_SUCCESS_URL = os.getenv("LOGIN_SUCCESS_URL", "/dashboard")
LOGOUT_SUCCESS_URL = os.getenv("LOGOUT_SUCCESS_URL", "/")

DEV_SUBJECT = os.getenv("DEV_SUBJECT", "dev-user")
DEV_LOGIN = os.getenv("DEV_LOGIN", "dev")
DEV_NAME = os.getenv("DEV_NAME", "Dev User")
DEV_EMAIL = os.getenv("DEV_EMAIL", "dev@example.com")

# =============================================================================
# Edge: CORS + trusted proxies
# =============================================================================

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

TrustedProxy = (
    ipaddress.IPv4Network
    | ipaddress.IPv6Network
    | ipaddress.IPv4Address
    | ipaddress.IPv6Address
)


def _parse_trusted_proxies(raw: str) -> list[TrustedProxy]:
    proxies: list[TrustedProxy] = []
    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        try:
            if "/" in value:
                proxies.append(ipaddress.ip_network(value, strict=False))
            else:
                proxies.append(ipaddress.ip_address(value))
        except ValueError:
            raise ValueError(f"Invalid TRUSTED_PROXY_IPS entry: {value}") from None
    return proxies


TRUSTED_PROXY_IPS = _parse_trusted_proxies(os.getenv("TRUSTED_PROXY_IPS", ""))

# =============================================================================
# Keys
# =============================================================================


def _decode_base64_key(value: str, env_name: str) -> bytes:
    if not value:
        raise ValueError(f"{env_name} environment variable not set")
    try:
        key_bytes = base64.b64decode(value)
    except ValueError as exc:
        raise ValueError(f"{env_name} must be base64-encoded: {exc}") from exc
    if len(key_bytes) != 32:
        raise ValueError(f"{env_name} must decode to 32 bytes (got {len(key_bytes)})")
    return key_bytes


def is_prod_like() -> bool:
    return ENVIRONMENT in PROD_LIKE_ENVIRONMENTS


def get_encryption_keys() -> list[bytes]:
    """Return session encryption keys in priority order (current -> previous).

    Outside prod-like environments a missing key is replaced by an ephemeral
    one, which means sessions do not survive a restart.
    """
    if not SESSION_ENCRYPTION_KEY and not is_prod_like():
        logger.warning(
            "SESSION_ENCRYPTION_KEY not set - using ephemeral key (dev/test only)",
            extra={"environment": ENVIRONMENT},
        )
        return [os.urandom(32)]

    keys = [_decode_base64_key(SESSION_ENCRYPTION_KEY, "SESSION_ENCRYPTION_KEY")]
    if SESSION_ENCRYPTION_KEY_PREV:
        keys.append(_decode_base64_key(SESSION_ENCRYPTION_KEY_PREV, "SESSION_ENCRYPTION_KEY_PREV"))
    return keys
