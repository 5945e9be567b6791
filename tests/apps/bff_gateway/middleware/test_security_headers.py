from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from apps.bff_gateway.middleware.security_headers import (
    DEFAULT_CSP_POLICY,
    HSTS_POLICY,
    SecurityHeadersMiddleware,
)


def _app(**kwargs) -> FastAPI:
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware, **kwargs)

    @app.get("/plain")
    async def plain() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/cached")
    async def cached() -> PlainTextResponse:
        return PlainTextResponse("ok", headers={"Cache-Control": "public, max-age=60"})

    return app


def test_headers_added() -> None:
    response = TestClient(_app()).get("/plain")

    assert response.headers["content-security-policy"] == DEFAULT_CSP_POLICY
    assert response.headers["strict-transport-security"] == HSTS_POLICY
    assert response.headers["x-content-type-options"] == "nosniff"
    assert "no-store" in response.headers["cache-control"]


def test_headers_added_to_404() -> None:
    response = TestClient(_app()).get("/missing")

    assert response.status_code == 404
    assert response.headers["content-security-policy"] == DEFAULT_CSP_POLICY


def test_route_headers_are_not_overridden() -> None:
    response = TestClient(_app()).get("/cached")

    assert response.headers["cache-control"] == "public, max-age=60"


def test_hsts_can_be_disabled_and_csp_customized() -> None:
    response = TestClient(_app(enable_hsts=False, csp_policy="default-src 'none'")).get("/plain")

    assert "strict-transport-security" not in response.headers
    assert response.headers["content-security-policy"] == "default-src 'none'"


def test_frame_options_denied() -> None:
    response = TestClient(_app()).get("/plain")

    assert response.headers["x-frame-options"] == "DENY"
