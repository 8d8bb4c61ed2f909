"""
Pytest configuration for spotify_broker. Spotify is replaced by an httpx.MockTransport;
the token store uses in-memory SQLite so tests don't touch the filesystem.
"""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from spotify_broker.config import Settings
from spotify_broker.main import create_app
from spotify_broker.token_store import TokenPair

FRONTEND_URI = "http://127.0.0.1:3000/"


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSpotify:
    """Stands in for accounts.spotify.com (token endpoint) and api.spotify.com."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        # Queue of (status, json) answers for POST /api/token; empty queue -> invalid_grant
        self.token_responses: list[tuple[int, dict]] = []
        # path -> (status, json or None) for the Web API
        self.api_responses: dict[str, tuple[int, dict | None]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "accounts.spotify.com":
            if not self.token_responses:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid refresh token"})
            status, body = self.token_responses.pop(0)
            return httpx.Response(status, json=body)
        status, body = self.api_responses.get(request.url.path, (404, {"error": {"status": 404}}))
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def token_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "accounts.spotify.com"]

    def api_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "api.spotify.com"]


def form_of(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def spotify():
    return FakeSpotify()


@pytest.fixture
def settings():
    return Settings(
        client_id="test-client",
        client_secret="test-secret",
        redirect_uri="http://127.0.0.1:3000/callback",
        frontend_uri=FRONTEND_URI,
        database_url="sqlite:///:memory:",
        log_level="DEBUG",
    )


@pytest.fixture
def make_client(settings, spotify, clock):
    """Factory: TestClient (lifespan running) over an app wired to the fake Spotify."""
    clients = []

    def _make(store=None, **overrides):
        s = replace(settings, **overrides)
        app = create_app(s, transport=spotify.transport, store=store, clock=clock)
        c = TestClient(app)
        c.__enter__()
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


def make_pair(clock: FakeClock, expires_in: int = 3600, access_token: str = "at-1", refresh_token: str = "rt-1") -> TokenPair:
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=clock() + timedelta(seconds=expires_in),
    )
