from __future__ import annotations

from urllib.parse import urlencode

import pytest
from starlette.datastructures import MutableHeaders
from starlette.requests import Request

from apps.bff_gateway.auth import token_codec
from apps.bff_gateway.auth.csrf import (
    CsrfAccept,
    CsrfGuard,
    CsrfReject,
    is_form_request,
    is_safe_method,
)


def _build_request(
    *,
    method: str = "POST",
    path: str = "/logout",
    headers: dict[str, str] | None = None,
    body: bytes = b"",
) -> Request:
    header_items: list[tuple[bytes, bytes]] = []
    if headers:
        for key, value in headers.items():
            header_items.append((key.lower().encode(), value.encode()))

    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": header_items,
        "query_string": b"",
        "client": ("127.0.0.1", 123),
        "server": ("testserver", 80),
        "scheme": "http",
    }

    async def receive() -> dict[str, object]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


def _form_request(token: str) -> Request:
    return _build_request(
        headers={"content-type": "application/x-www-form-urlencoded"},
        body=urlencode({"csrf_token": token}).encode(),
    )


@pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS", "TRACE", "get"])
def test_safe_methods(method: str) -> None:
    assert is_safe_method(method) is True


@pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
def test_unsafe_methods(method: str) -> None:
    assert is_safe_method(method) is False


def test_is_form_request() -> None:
    assert is_form_request(
        _build_request(headers={"content-type": "application/x-www-form-urlencoded"})
    )
    assert is_form_request(
        _build_request(headers={"content-type": "multipart/form-data; boundary=x"})
    )
    assert not is_form_request(_build_request(headers={"content-type": "application/json"}))


@pytest.mark.asyncio()
async def test_safe_method_needs_no_token(csrf_guard: CsrfGuard) -> None:
    request = _build_request(method="GET", path="/me")

    decision = await csrf_guard.validate(request, token_codec.generate_secret())

    assert decision == CsrfAccept()


@pytest.mark.asyncio()
async def test_valid_header_token_is_accepted(csrf_guard: CsrfGuard) -> None:
    secret = token_codec.generate_secret()
    request = _build_request(headers={"X-CSRF-Token": token_codec.mask(secret)})

    decision = await csrf_guard.validate(request, secret)

    assert decision == CsrfAccept(transport="header")


@pytest.mark.asyncio()
async def test_valid_form_token_is_accepted(csrf_guard: CsrfGuard) -> None:
    secret = token_codec.generate_secret()

    decision = await csrf_guard.validate(_form_request(token_codec.mask(secret)), secret)

    assert decision == CsrfAccept(transport="form")


@pytest.mark.asyncio()
async def test_missing_token_is_rejected(csrf_guard: CsrfGuard) -> None:
    decision = await csrf_guard.validate(_build_request(), token_codec.generate_secret())

    assert decision == CsrfReject(reason="missing")


@pytest.mark.asyncio()
async def test_empty_header_is_rejected_as_missing(csrf_guard: CsrfGuard) -> None:
    request = _build_request(headers={"X-CSRF-Token": ""})

    decision = await csrf_guard.validate(request, token_codec.generate_secret())

    assert decision == CsrfReject(reason="missing")


@pytest.mark.asyncio()
async def test_malformed_token_is_rejected(csrf_guard: CsrfGuard) -> None:
    request = _build_request(headers={"X-CSRF-Token": "definitely-not-a-token"})

    decision = await csrf_guard.validate(request, token_codec.generate_secret())

    assert decision == CsrfReject(reason="malformed")


@pytest.mark.asyncio()
async def test_token_from_another_session_is_rejected(csrf_guard: CsrfGuard) -> None:
    other_secret = token_codec.generate_secret()
    request = _build_request(headers={"X-CSRF-Token": token_codec.mask(other_secret)})

    decision = await csrf_guard.validate(request, token_codec.generate_secret())

    assert decision == CsrfReject(reason="mismatch")


@pytest.mark.asyncio()
async def test_header_takes_precedence_over_form(csrf_guard: CsrfGuard) -> None:
    secret = token_codec.generate_secret()
    request = _build_request(
        headers={
            "content-type": "application/x-www-form-urlencoded",
            "X-CSRF-Token": "garbage",
        },
        body=urlencode({"csrf_token": token_codec.mask(secret)}).encode(),
    )

    decision = await csrf_guard.validate(request, secret)

    assert decision == CsrfReject(reason="malformed")


@pytest.mark.asyncio()
async def test_rejection_is_logged_without_token(csrf_guard: CsrfGuard, caplog) -> None:
    request = _build_request(headers={"X-CSRF-Token": "definitely-not-a-token"})

    with caplog.at_level("WARNING"):
        await csrf_guard.validate(request, token_codec.generate_secret())

    record = next(r for r in caplog.records if r.getMessage() == "CSRF validation rejected")
    assert record.reason == "malformed"
    assert record.transport == "header"
    assert "definitely-not-a-token" not in caplog.text


def test_anonymous_secret_recovers_valid_cookie(csrf_guard: CsrfGuard) -> None:
    secret = token_codec.generate_secret()

    assert csrf_guard.anonymous_secret(token_codec.mask(secret)) == secret


def test_anonymous_secret_replaces_invalid_cookie(csrf_guard: CsrfGuard) -> None:
    first = csrf_guard.anonymous_secret("garbage")
    second = csrf_guard.anonymous_secret(None)

    assert len(first) == token_codec.SECRET_BYTES
    assert first != second


def test_attach_token_sets_readable_masked_cookie(csrf_guard: CsrfGuard) -> None:
    secret = token_codec.generate_secret()
    headers = MutableHeaders()

    csrf_guard.attach_token(secret, headers)
    csrf_guard.attach_token(secret, headers)

    cookies = headers.getlist("set-cookie")
    assert len(cookies) == 2
    tokens = [c.split(";", 1)[0].split("=", 1)[1] for c in cookies]
    assert tokens[0] != tokens[1]
    assert all(token_codec.unmask(t) == secret for t in tokens)
    assert all("httponly" not in c.lower() for c in cookies)


def test_clear_token_expires_cookie(csrf_guard: CsrfGuard) -> None:
    headers = MutableHeaders()

    csrf_guard.clear_token(headers)

    cookie = headers["set-cookie"]
    assert cookie.startswith('csrf-token="";')
    assert "Max-Age=0" in cookie
