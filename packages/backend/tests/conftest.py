"""Test fixtures: a throwaway SQLite database and app per test.

Learn: Each test builds its own ConnectionManager against a fresh
SQLite file in tmp_path and hands it to create_app(), together with a
TokenService signed with a test secret and an in-memory Redis for the
rate limiter. Nothing is shared between tests, so no rollback tricks
are needed.

bcrypt rounds are dropped to the minimum so registration-heavy tests
stay fast.
"""

import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from trivedia.auth import password
from trivedia.auth.jwt import Identity, TokenService
from trivedia.auth.password import hash_password
from trivedia.auth.roles import Role
from trivedia.auth.store import UserStore
from trivedia.db.engine import ConnectionManager
from trivedia.db.models import Base
from trivedia.main import create_app

TEST_SECRET = "test-signing-secret-0123456789abcdef"


class MemoryRedis:
    """In-process stand-in for the two Redis commands the rate limiter uses."""

    def __init__(self):
        self.counts: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(password, "BCRYPT_ROUNDS", 4)


@pytest_asyncio.fixture()
async def connections(tmp_path):
    """ConnectionManager on a fresh SQLite file with the schema created."""
    manager = ConnectionManager(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    )
    engine = await manager.ensure_connected()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield manager
    finally:
        await manager.reset()


@pytest.fixture()
def tokens():
    return TokenService(secret=TEST_SECRET, lifetime=timedelta(hours=24))


@pytest_asyncio.fixture()
async def client(connections, tokens):
    """HTTP client against an app wired to the test database."""
    app = create_app(connections=connections, tokens=tokens, redis=MemoryRedis())
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def make_user(connections, tokens):
    """Factory: insert a user straight into the store and mint a token for it."""

    async def _make(
        role: Role = Role.VIEWER,
        email: str | None = None,
        username: str | None = None,
        password: str = "secret123",
    ):
        suffix = uuid.uuid4().hex[:8]
        async with connections.session() as db:
            user = await UserStore(db).create(
                username=username or f"user_{suffix}",
                email=email or f"{suffix}@example.com",
                password_hash=hash_password(password),
                first_name="Test",
                last_name="User",
                role=role,
            )
        token = tokens.issue(Identity(id=str(user.id), role=role))
        return user, token

    return _make


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def registration(**overrides) -> dict:
    suffix = uuid.uuid4().hex[:8]
    body = {
        "username": f"user_{suffix}",
        "email": f"{suffix}@example.com",
        "password": "secret123",
        "firstName": "Ada",
        "lastName": "Lovelace",
    }
    body.update(overrides)
    return body
