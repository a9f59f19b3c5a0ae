"""Rate limiting tests.

Learn: The limiter counts in Redis. Here it gets the in-memory double
from conftest, and time is pinned so a test never straddles a minute
boundary and starts a fresh window halfway through.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import MemoryRedis
from trivedia.config import settings
from trivedia.main import create_app
from trivedia.middleware import rate_limit

NOW = 1_767_225_600.0


@pytest.fixture(autouse=True)
def frozen_window(monkeypatch):
    monkeypatch.setattr(rate_limit.time, "time", lambda: NOW)


def _login():
    # Missing password: rejected by validation, still counted.
    return {"email": "nobody@example.com"}


@pytest.mark.asyncio
async def test_auth_bucket_returns_429_in_envelope(client):
    for _ in range(settings.rate_limit_auth_rpm):
        r = await client.post("/api/auth/login", json=_login())
        assert r.status_code == 400

    r = await client.post("/api/auth/login", json=_login())
    assert r.status_code == 429
    assert r.json() == {
        "success": False,
        "message": "Too many requests, please try again later.",
        "error": "TooManyRequests",
    }
    assert r.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_login_and_register_share_the_auth_bucket(client):
    for _ in range(settings.rate_limit_auth_rpm):
        await client.post("/api/auth/login", json=_login())

    r = await client.post("/api/auth/register", json={})
    assert r.status_code == 429


@pytest.mark.asyncio
async def test_auth_limit_does_not_block_other_routes(client):
    for _ in range(settings.rate_limit_auth_rpm + 1):
        await client.post("/api/auth/login", json=_login())

    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == str(settings.rate_limit_rpm)
    assert r.headers["X-RateLimit-Remaining"] == str(settings.rate_limit_rpm - 1)


@pytest.mark.asyncio
async def test_remaining_counts_down(client):
    r1 = await client.post("/api/auth/login", json=_login())
    r2 = await client.post("/api/auth/login", json=_login())
    limit = settings.rate_limit_auth_rpm
    assert r1.headers["X-RateLimit-Limit"] == str(limit)
    assert r1.headers["X-RateLimit-Remaining"] == str(limit - 1)
    assert r2.headers["X-RateLimit-Remaining"] == str(limit - 2)


@pytest.mark.asyncio
async def test_counter_key_expires(connections, tokens):
    redis = MemoryRedis()
    app = create_app(connections=connections, tokens=tokens, redis=redis)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        await c.get("/api/health")

    [key] = redis.counts
    assert key.startswith("trivedia:rl:") and key.endswith(f":api:{int(NOW // 60)}")
    assert redis.ttls[key] == 120


class DownRedis(MemoryRedis):
    async def incr(self, key):
        raise RedisConnectionError("Connection refused")


@pytest.mark.asyncio
async def test_redis_outage_skips_limiting(connections, tokens):
    app = create_app(connections=connections, tokens=tokens, redis=DownRedis())
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        for _ in range(settings.rate_limit_auth_rpm + 2):
            r = await c.post("/api/auth/login", json=_login())
            assert r.status_code == 400
            assert "X-RateLimit-Limit" not in r.headers
