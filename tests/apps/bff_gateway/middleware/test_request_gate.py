from __future__ import annotations

import logging
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from fastapi.testclient import TestClient
from starlette.requests import Request

from apps.bff_gateway.auth import token_codec
from apps.bff_gateway.auth.authenticator import SessionAuthenticator
from apps.bff_gateway.middleware.request_gate import (
    CSRF_REJECTED_BODY,
    STORE_UNAVAILABLE_BODY,
    UNAUTHENTICATED_BODY,
    is_browser_navigation,
)

JSON = {"Accept": "application/json"}
BROWSER = {"Accept": "text/html,application/xhtml+xml,*/*;q=0.8"}


def _login(client: TestClient, subject: str = "alice") -> str:
    start = client.get("/login-start")
    state = parse_qs(urlsplit(start.headers["location"]).query)["state"][0]
    response = client.get("/login-callback", params={"code": subject, "state": state})
    assert response.status_code == 302
    return client.cookies["session-id"]


def _set_cookies(response) -> list[str]:
    return response.headers.get_list("set-cookie")


def _cookie_value(response, name: str) -> str | None:
    for header in _set_cookies(response):
        key, _, rest = header.partition("=")
        if key == name:
            return rest.split(";", 1)[0]
    return None


def test_anonymous_me_is_401_with_fresh_csrf_cookie(client: TestClient) -> None:
    response = client.get("/me", headers=JSON)

    assert response.status_code == 401
    assert response.json() == UNAUTHENTICATED_BODY
    token = _cookie_value(response, "csrf-token")
    assert token is not None
    assert token_codec.unmask(token) is not None


def test_anonymous_browser_navigation_redirects_to_login(client: TestClient) -> None:
    response = client.get("/me", headers=BROWSER)

    assert response.status_code == 302
    assert response.headers["location"] == "/login-start"
    assert _cookie_value(response, "csrf-token") is not None


def test_anonymous_post_is_401_not_redirect(client: TestClient) -> None:
    response = client.post("/logout", headers=BROWSER)

    assert response.status_code == 401


def test_public_route_needs_no_session(client: TestClient) -> None:
    response = client.get("/", headers=JSON)

    assert response.status_code == 200
    assert _cookie_value(response, "csrf-token") is not None
    assert _cookie_value(response, "session-id") is None


def test_csrf_cookie_is_remasked_on_every_response(client: TestClient) -> None:
    _login(client)

    first = _cookie_value(client.get("/me", headers=JSON), "csrf-token")
    second = _cookie_value(client.get("/me", headers=JSON), "csrf-token")

    assert first is not None
    assert second is not None
    assert first != second
    assert token_codec.unmask(first) == token_codec.unmask(second)


def test_anonymous_csrf_secret_is_stable_across_requests(client: TestClient) -> None:
    first = _cookie_value(client.get("/", headers=JSON), "csrf-token")
    second = _cookie_value(client.get("/", headers=JSON), "csrf-token")

    assert first != second
    assert token_codec.unmask(first) == token_codec.unmask(second)


def test_safe_method_with_session_needs_no_csrf(client: TestClient) -> None:
    _login(client)
    client.cookies.delete("csrf-token")

    response = client.get("/me", headers=JSON)

    assert response.status_code == 200
    assert response.json()["subject"] == "alice"


def test_logout_without_csrf_header_is_403(client: TestClient) -> None:
    session_id = _login(client)

    response = client.post("/logout", headers=JSON)

    assert response.status_code == 403
    assert response.json() == CSRF_REJECTED_BODY
    assert client.cookies["session-id"] == session_id
    assert client.get("/me", headers=JSON).status_code == 200


@pytest.mark.parametrize("bad_token", ["garbage", "A" * 86])
def test_logout_with_malformed_or_wrong_token_is_403(client: TestClient, bad_token: str) -> None:
    _login(client)

    response = client.post("/logout", headers={**JSON, "X-CSRF-Token": bad_token})

    assert response.status_code == 403
    assert response.json() == CSRF_REJECTED_BODY


def test_token_from_another_session_is_403(client: TestClient) -> None:
    _login(client, "bob")
    bob_token = client.cookies["csrf-token"]
    client.cookies.clear()
    _login(client, "alice")

    response = client.post("/logout", headers={**JSON, "X-CSRF-Token": bob_token})

    assert response.status_code == 403


def test_rejected_response_still_carries_csrf_cookie(client: TestClient) -> None:
    _login(client)

    response = client.post("/logout", headers=JSON)

    assert _cookie_value(response, "csrf-token") is not None


def test_pre_login_anonymous_token_is_invalid_after_login(client: TestClient) -> None:
    anonymous_token = _cookie_value(client.get("/", headers=JSON), "csrf-token")
    _login(client)

    response = client.post("/logout", headers={**JSON, "X-CSRF-Token": anonymous_token})

    assert response.status_code == 403


def test_logout_with_form_field_token(client: TestClient) -> None:
    _login(client)

    response = client.post("/logout", data={"csrf_token": client.cookies["csrf-token"]})

    assert response.status_code == 302
    assert client.get("/me", headers=JSON).status_code == 401


def test_logout_with_wrong_form_field_token_is_403(client: TestClient) -> None:
    _login(client)

    response = client.post("/logout", data={"csrf_token": "garbage"})

    assert response.status_code == 403


def test_expired_session_is_anonymous_and_cookie_removed(client: TestClient, clock) -> None:
    _login(client)
    clock.advance(timedelta(minutes=30))

    response = client.get("/me", headers=JSON)

    assert response.status_code == 401
    assert any(h.startswith('session-id="";') for h in _set_cookies(response))
    assert "session-id" not in client.cookies


def test_activity_keeps_session_alive(client: TestClient, clock) -> None:
    _login(client)

    for _ in range(3):
        clock.advance(timedelta(minutes=20))
        assert client.get("/me", headers=JSON).status_code == 200


def test_unknown_session_cookie_is_cleared(client: TestClient) -> None:
    response = client.get("/", headers={**JSON, "Cookie": "session-id=forged"})

    assert response.status_code == 200
    assert any(h.startswith('session-id="";') for h in _set_cookies(response))


def test_store_failure_returns_503(client: TestClient, authenticator: SessionAuthenticator) -> None:
    _login(client)
    authenticator.store.redis.get = AsyncMock(side_effect=redis.ConnectionError("down"))

    response = client.get("/me", headers=JSON)

    assert response.status_code == 503
    assert response.json() == STORE_UNAVAILABLE_BODY


def test_store_failure_on_public_route_with_cookie_returns_503(
    client: TestClient, authenticator: SessionAuthenticator
) -> None:
    authenticator.store.redis.get = AsyncMock(side_effect=redis.ConnectionError("down"))

    response = client.get("/", headers={**JSON, "Cookie": "session-id=anything"})

    assert response.status_code == 503


def test_route_handlers_see_request_context(client: TestClient) -> None:
    _login(client)

    response = client.get("/me", headers=JSON)

    assert response.json() == {
        "authenticated": True,
        "subject": "alice",
        "attributes": {"login": "alice", "name": "Alice"},
    }


def _request(method: str, accept: str | None) -> Request:
    headers = [(b"accept", accept.encode())] if accept else []
    return Request({"type": "http", "method": method, "path": "/me", "headers": headers})


def test_is_browser_navigation() -> None:
    assert is_browser_navigation(_request("GET", "text/html")) is True
    assert is_browser_navigation(_request("HEAD", "text/html,*/*")) is True
    assert is_browser_navigation(_request("GET", "application/json")) is False
    assert is_browser_navigation(_request("GET", None)) is False
    assert is_browser_navigation(_request("POST", "text/html")) is False


def test_csrf_rejection_is_logged_with_client_ip(client: TestClient, caplog) -> None:
    _login(client)

    with caplog.at_level(logging.WARNING, logger="apps.bff_gateway.auth.csrf"):
        client.post("/logout", headers=JSON)

    record = next(r for r in caplog.records if r.getMessage() == "CSRF validation rejected")
    assert record.client_ip == "testclient"
    assert record.reason == "missing"
