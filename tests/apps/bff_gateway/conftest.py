from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import pytest
from cryptography.fernet import Fernet
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from fastapi import FastAPI
from fastapi.testclient import TestClient

from apps.bff_gateway.auth.authenticator import SessionAuthenticator
from apps.bff_gateway.auth.concurrency import ConcurrencyPolicy
from apps.bff_gateway.auth.cookie_config import CookieConfig
from apps.bff_gateway.auth.csrf import CsrfGuard
from apps.bff_gateway.auth.exceptions import IdentityProviderError
from apps.bff_gateway.auth.providers.base import IdentityProvider
from apps.bff_gateway.auth.session_store import Principal, RedisSessionStore
from apps.bff_gateway.main import create_app

IDLE_TIMEOUT = timedelta(minutes=30)
AUTHORIZE_URL = "https://idp.example.com/authorize"


class FakeClock:
    """Settable clock injected into the session store."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class StubIdentityProvider(IdentityProvider):
    """Provider that logs in ``code=<subject>`` for any state it issued, once."""

    name = "stub"

    def __init__(self) -> None:
        self.pending: set[str] = set()

    async def begin_login(self, state: str) -> str:
        self.pending.add(state)
        return f"{AUTHORIZE_URL}?{urlencode({'state': state})}"

    async def complete_login(self, code: str, state: str) -> Principal:
        if state not in self.pending:
            raise IdentityProviderError("Invalid or expired state parameter")
        self.pending.discard(state)
        return Principal(subject=code, attributes={"login": code, "name": code.title()})


@pytest.fixture()
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture()
def redis_client(fake_server: FakeServer) -> FakeRedis:
    return FakeRedis(server=fake_server)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def session_store(redis_client: FakeRedis, clock: FakeClock) -> RedisSessionStore:
    return RedisSessionStore(
        redis_client=redis_client,
        encryption_keys=[Fernet.generate_key()],
        idle_timeout=IDLE_TIMEOUT,
        clock=clock,
    )


@pytest.fixture()
def cookie_config() -> CookieConfig:
    return CookieConfig(secure=False)


@pytest.fixture()
def csrf_guard(cookie_config: CookieConfig) -> CsrfGuard:
    return CsrfGuard(cookie_config=cookie_config)


@pytest.fixture()
def make_authenticator(
    session_store: RedisSessionStore, csrf_guard: CsrfGuard
) -> Callable[..., SessionAuthenticator]:
    def _make(
        max_sessions_per_subject: int = 1,
        policy: ConcurrencyPolicy = ConcurrencyPolicy.EVICT_OLDEST,
    ) -> SessionAuthenticator:
        return SessionAuthenticator(
            store=session_store,
            csrf_guard=csrf_guard,
            max_sessions_per_subject=max_sessions_per_subject,
            policy=policy,
        )

    return _make


@pytest.fixture()
def authenticator(
    make_authenticator: Callable[..., SessionAuthenticator],
) -> SessionAuthenticator:
    return make_authenticator()


@pytest.fixture()
def identity_provider() -> StubIdentityProvider:
    return StubIdentityProvider()


@pytest.fixture()
def app(authenticator: SessionAuthenticator, identity_provider: StubIdentityProvider) -> FastAPI:
    return create_app(authenticator=authenticator, identity_provider=identity_provider)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    # One TestClient context keeps a single event loop for the FakeRedis connection.
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


def _state_from_location(response: httpx.Response) -> str:
    return parse_qs(urlsplit(response.headers["location"]).query)["state"][0]


@pytest.fixture()
def oauth_login() -> Callable[..., httpx.Response]:
    """Run /login-start then /login-callback in one browser.

    ``cookie`` replaces the jar for the callback (for planting a session id);
    the login-state cookie from /login-start is appended to it.
    """

    def _login(
        client: TestClient, subject: str = "alice", cookie: str | None = None
    ) -> httpx.Response:
        start = client.get("/login-start")
        state = _state_from_location(start)
        headers: dict[str, str] = {}
        if cookie is not None:
            headers["Cookie"] = f"{cookie}; oauth-state={client.cookies['oauth-state']}"
        return client.get(
            "/login-callback", params={"code": subject, "state": state}, headers=headers
        )

    return _login
