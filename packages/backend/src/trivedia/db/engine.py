"""Connection lifecycle: one connection attempt per process instance.

Learn: The API runs on a serverless platform. Each cold start is a fresh
process, and a warm process may receive overlapping requests before the
first connection attempt has settled. ConnectionManager guarantees:

1. At most one attempt is in flight. The attempt is recorded as an
   asyncio.Task *before* the first await, so a concurrent caller that
   arrives while it is pending awaits the same task instead of starting
   its own.
2. A successful attempt is reused for the life of the process.
3. A failed (or timed-out) attempt is forgotten, so the next call retries.
4. A caller being cancelled never cancels the shared attempt: callers
   await it through asyncio.shield().

The manager is constructed once per app (see trivedia.main.create_app) and
reached through request.app.state, never through a module global.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

import structlog
from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from trivedia.config import settings
from trivedia.errors import DatabaseUnavailable

logger = structlog.get_logger()

Connector = Callable[[], Awaitable[AsyncEngine]]


def _retrieve_outcome(task: asyncio.Task) -> None:
    # Marks a failure as seen even if every awaiting caller was cancelled.
    if not task.cancelled():
        task.exception()


class ConnectionManager:
    """Owns the process-wide database connection handle."""

    def __init__(
        self,
        database_url: str,
        connect_timeout: float = 5.0,
        socket_timeout: float = 45.0,
        pool_size: int = 5,
        max_overflow: int = 10,
        connector: Optional[Connector] = None,
    ):
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._connector = connector or self._open_engine
        self._attempt: Optional[asyncio.Task] = None
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, **overrides) -> "ConnectionManager":
        options = dict(
            database_url=settings.database_url,
            connect_timeout=settings.db_connect_timeout_seconds,
            socket_timeout=settings.db_socket_timeout_seconds,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        options.update(overrides)
        return cls(**options)

    @property
    def connected(self) -> bool:
        return self._engine is not None

    async def ensure_connected(self) -> AsyncEngine:
        """Return the live engine, connecting first if needed.

        Raises DatabaseUnavailable if the (shared) attempt fails.
        """
        if self._engine is not None:
            return self._engine

        attempt = self._attempt
        if attempt is None or attempt.cancelled():
            # No await between the check and the assignment: this is what
            # makes concurrent callers on the same loop share one attempt.
            attempt = asyncio.ensure_future(self._connect())
            attempt.add_done_callback(_retrieve_outcome)
            self._attempt = attempt

        return await asyncio.shield(attempt)

    async def _connect(self) -> AsyncEngine:
        logger.info("db.connecting", timeout=self.connect_timeout)
        try:
            engine = await asyncio.wait_for(
                self._connector(), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError as e:
            self._attempt = None
            logger.error("db.connect_timeout", timeout=self.connect_timeout)
            raise DatabaseUnavailable(
                f"Database connection timed out after {self.connect_timeout}s"
            ) from e
        except Exception as e:
            self._attempt = None
            logger.error("db.connect_failed", error=str(e))
            raise DatabaseUnavailable(f"Database connection failed: {e}") from e

        self._engine = engine
        self._sessions = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("db.connected")
        return engine

    async def _open_engine(self) -> AsyncEngine:
        """Default connector: build an engine and prove it with SELECT 1."""
        engine = create_async_engine(self.database_url, **self._engine_options())
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except BaseException:
            await engine.dispose()
            raise
        return engine

    def _engine_options(self) -> dict:
        if self.database_url.startswith("sqlite"):
            # SQLite has no pool sizing; the timeout is the lock wait.
            return {"connect_args": {"timeout": self.socket_timeout}}
        options: dict = {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_pre_ping": True,
            "echo": settings.debug,
        }
        if self.database_url.startswith("postgresql+asyncpg"):
            options["connect_args"] = {
                "timeout": self.connect_timeout,
                "command_timeout": self.socket_timeout,
            }
        return options

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """A session bound to the live engine. Connects first if needed."""
        await self.ensure_connected()
        async with self._sessions() as session:
            try:
                yield session
            finally:
                await session.close()

    async def ping(self) -> None:
        engine = await self.ensure_connected()
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("db.ping_failed", error=str(e))
            await self.reset()
            raise DatabaseUnavailable(f"Database ping failed: {e}") from e

    async def reset(self) -> None:
        """Dispose of the connection and go back to "not connected"."""
        engine = self._engine
        self._engine = None
        self._sessions = None
        self._attempt = None
        if engine is not None:
            await engine.dispose()
            logger.info("db.disposed")


def get_connections(request: Request) -> ConnectionManager:
    """FastAPI dependency: the app's connection manager."""
    return request.app.state.connections


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: yields a session per request, auto-closes."""
    async with get_connections(request).session() as session:
        yield session
