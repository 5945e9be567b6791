"""FastAPI BFF gateway.

Endpoints:
- GET  /               service info (public)
- GET  /health         liveness (public)
- GET  /login-start    begin delegated OAuth login (public)
- GET  /login-callback complete login, issue a fresh session (public)
- GET  /me             principal snapshot (protected)
- POST /logout         invalidate session, clear cookies (protected, CSRF)

The browser only ever holds an opaque session cookie and a masked CSRF
token; upstream provider tokens never leave the server.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from apps.bff_gateway import config
from apps.bff_gateway.auth.authenticator import SessionAuthenticator
from apps.bff_gateway.auth.client_ip import ClientIpResolver
from apps.bff_gateway.auth.exceptions import (
    IdentityProviderError,
    SessionLimitExceededError,
    StoreUnavailableError,
)
from apps.bff_gateway.auth.providers import IdentityProvider
from apps.bff_gateway.dependencies import (
    get_authenticator,
    get_identity_provider,
    get_redis_client,
)
from apps.bff_gateway.middleware import RequestGate, SecurityHeadersMiddleware
from apps.bff_gateway.middleware.request_gate import STORE_UNAVAILABLE_BODY
from apps.bff_gateway.routes import home, login, logout, me
from libs.common.logging import ASGITraceIDMiddleware, configure_logging

logger = logging.getLogger(__name__)


def _validate_production_config() -> None:
    """Refuse to start a prod-like deployment with insecure settings.

    Raises:
        RuntimeError: If any check fails in production/staging
    """
    if not config.is_prod_like():
        if not config.COOKIE_SECURE:
            logger.warning(
                "COOKIE_SECURE disabled - cookies sent over plain HTTP (dev/test only)",
                extra={"environment": config.ENVIRONMENT},
            )
        return

    problems: list[str] = []
    if not config.COOKIE_SECURE:
        problems.append("COOKIE_SECURE must be enabled")
    if not config.SESSION_ENCRYPTION_KEY:
        problems.append("SESSION_ENCRYPTION_KEY must be set")
    if config.AUTH_PROVIDER == "dev":
        problems.append("AUTH_PROVIDER=dev is not allowed")
    if config.AUTH_PROVIDER == "github" and not (
        config.OAUTH_CLIENT_ID and config.OAUTH_CLIENT_SECRET
    ):
        problems.append("OAUTH_CLIENT_ID and OAUTH_CLIENT_SECRET must be set")

    if problems:
        raise RuntimeError(
            f"Insecure configuration for ENVIRONMENT={config.ENVIRONMENT}: " + "; ".join(problems)
        )


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Session store unavailable",
        extra={"path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(STORE_UNAVAILABLE_BODY, status_code=503)


async def session_limit_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": "session_limit_exceeded"}, status_code=409)


async def identity_provider_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"detail": "Authentication failed"}, status_code=400)


def create_app(
    authenticator: SessionAuthenticator | None = None,
    identity_provider: IdentityProvider | None = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        authenticator: Replaces the environment-configured authenticator
            (tests inject one backed by fakeredis)
        identity_provider: Replaces the environment-configured provider

    Returns:
        Configured FastAPI application
    """
    owns_redis = authenticator is None
    provider_name = identity_provider.name if identity_provider else config.AUTH_PROVIDER

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _validate_production_config()
        logger.info(
            "BFF gateway started",
            extra={
                "environment": config.ENVIRONMENT,
                "auth_provider": provider_name,
                "concurrency_policy": config.SESSION_CONCURRENCY_POLICY,
            },
        )
        try:
            yield
        finally:
            logger.info("BFF gateway shutting down")
            if owns_redis:
                await get_redis_client().aclose()

    resolve_authenticator: Callable[[], SessionAuthenticator]
    if authenticator is not None:
        injected = authenticator

        def resolve_authenticator() -> SessionAuthenticator:
            return injected

    else:
        resolve_authenticator = get_authenticator

    # Outermost first. The request gate sits innermost so that its cookie
    # changes are applied before security headers and the trace ID are added.
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=config.CORS_ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        ),
        Middleware(ASGITraceIDMiddleware),
        Middleware(SecurityHeadersMiddleware),
        Middleware(
            RequestGate,
            get_authenticator=resolve_authenticator,
            client_ip_resolver=ClientIpResolver(config.TRUSTED_PROXY_IPS),
        ),
    ]

    app = FastAPI(
        title="BFF Gateway",
        description="OAuth2 backend-for-frontend with server-side sessions and CSRF protection",
        version=config.SERVICE_VERSION,
        lifespan=lifespan,
        middleware=middleware,
    )

    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.add_exception_handler(SessionLimitExceededError, session_limit_handler)
    app.add_exception_handler(IdentityProviderError, identity_provider_handler)

    app.include_router(home.router, tags=["info"])
    app.include_router(login.router, tags=["auth"])
    app.include_router(me.router, tags=["auth"])
    app.include_router(logout.router, tags=["auth"])

    if authenticator is not None:
        app.dependency_overrides[get_authenticator] = resolve_authenticator
    if identity_provider is not None:
        provider = identity_provider
        app.dependency_overrides[get_identity_provider] = lambda: provider

    return app


configure_logging(service_name=config.SERVICE_NAME, log_level=config.LOG_LEVEL)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT, log_config=None)
