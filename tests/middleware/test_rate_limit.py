"""Tests for the rate limiting middleware behaviour."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from trackmatch.config import RateLimitConfig, RateLimitMiddlewareConfig
from trackmatch.middleware.errors import setup_exception_handlers
from trackmatch.middleware.rate_limit import RateLimitMiddleware, client_ip, session_id
from trackmatch.utils.rate_limit import RateLimitStore


class _FrozenClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


def _request(headers: dict[str, str]) -> Request:
    raw = [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def _create_app(config: RateLimitMiddlewareConfig, clock: _FrozenClock) -> FastAPI:
    app = FastAPI()
    app.state.rate_limit_store = RateLimitStore(clock=clock)

    @app.get("/api/limited")
    async def _limited() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/api/catalog/search")
    async def _search() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health")
    async def _health() -> dict[str, bool]:
        return {"ok": True}

    app.add_middleware(RateLimitMiddleware, config=config)
    setup_exception_handlers(app)
    return app


# Windows chosen so refill rates are exact binary fractions.
_CONFIG = RateLimitMiddlewareConfig(
    enabled=True,
    general=RateLimitConfig(capacity=2, window_ms=2_048),
    generate=RateLimitConfig(capacity=1, window_ms=1_024),
)


def test_client_ip_prefers_first_forwarded_hop() -> None:
    assert client_ip(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})) == "203.0.113.7"
    assert client_ip(_request({"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"
    assert client_ip(_request({})) == "unknown"


def test_session_id_fallback_chain() -> None:
    assert session_id(_request({"Cookie": "session_id=abc; access_token=zzz"})) == "abc"

    token = "t" * 40
    assert session_id(_request({"Cookie": f"access_token={token}"})) == "t" * 32

    agent = "Mozilla/5.0 " + "x" * 80
    identity = session_id(_request({"X-Real-IP": "198.51.100.2", "User-Agent": agent}))
    assert identity == f"198.51.100.2:{agent[:50]}"


def test_allows_until_bucket_is_empty_then_rejects() -> None:
    clock = _FrozenClock()
    client = TestClient(_create_app(_CONFIG, clock))

    first = client.get("/api/limited")
    second = client.get("/api/limited")
    third = client.get("/api/limited")

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert second.headers["X-RateLimit-Remaining"] == "0"

    assert third.status_code == 429
    body = third.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "RATE_LIMIT"
    assert body["error"]["meta"] == {"retry_after": 2}
    assert third.headers["Retry-After"] == "2"
    assert third.headers["X-RateLimit-Limit"] == "2"
    assert third.headers["X-RateLimit-Remaining"] == "0"
    assert third.headers["X-RateLimit-Reset"] == "1700000003"
    assert "X-Debug-Id" in third.headers


def test_identities_are_isolated_by_forwarded_address() -> None:
    client = TestClient(_create_app(_CONFIG, _FrozenClock()))

    for _ in range(2):
        assert client.get("/api/limited", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 200
    assert client.get("/api/limited", headers={"X-Forwarded-For": "1.1.1.1"}).status_code == 429
    assert client.get("/api/limited", headers={"X-Forwarded-For": "2.2.2.2"}).status_code == 200


def test_search_routes_use_session_bucket() -> None:
    client = TestClient(_create_app(_CONFIG, _FrozenClock()))
    client.cookies.set("session_id", "session-1")

    assert client.post("/api/catalog/search").status_code == 200
    limited = client.post("/api/catalog/search")
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "2"

    client.cookies.set("session_id", "session-2")
    assert client.post("/api/catalog/search").status_code == 200


def test_unguarded_paths_bypass_limits() -> None:
    client = TestClient(_create_app(_CONFIG, _FrozenClock()))
    for _ in range(5):
        response = client.get("/health")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers


def test_disabled_middleware_passes_through() -> None:
    config = RateLimitMiddlewareConfig(
        enabled=False, general=RateLimitConfig(capacity=1, window_ms=60_000)
    )
    client = TestClient(_create_app(config, _FrozenClock()))
    for _ in range(3):
        assert client.get("/api/limited").status_code == 200
