"""ConnectionManager tests: single attempt, retry, timeout, cancellation.

Learn: The connector is swapped for a fake that counts calls and can be
held open with an asyncio.Event, so we can pile concurrent callers onto
a pending attempt and check exactly how many attempts were started.
"""

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock

import pytest

from trivedia.db.engine import ConnectionManager
from trivedia.errors import DatabaseUnavailable


class FakeConnector:
    """Connector that records calls; fails or blocks according to a script."""

    def __init__(self, outcomes=None, gate: asyncio.Event | None = None):
        self.calls = 0
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.started = asyncio.Event()
        self.engines = []

    async def __call__(self):
        self.calls += 1
        self.started.set()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, (int, float)):
            await asyncio.sleep(outcome)
        engine = MagicMock(name=f"engine-{self.calls}")
        engine.dispose = AsyncMock()
        self.engines.append(engine)
        return engine


def _manager(connector, **kwargs) -> ConnectionManager:
    return ConnectionManager("sqlite+aiosqlite://", connector=connector, **kwargs)


# ═══════════════════════════════════════════════════════════
# Single attempt
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_attempt():
    gate = asyncio.Event()
    connector = FakeConnector(gate=gate)
    manager = _manager(connector)

    callers = [asyncio.create_task(manager.ensure_connected()) for _ in range(25)]
    await connector.started.wait()
    gate.set()
    engines = await asyncio.gather(*callers)

    assert connector.calls == 1
    assert all(e is engines[0] for e in engines)


@pytest.mark.asyncio
async def test_successful_connection_is_reused():
    connector = FakeConnector()
    manager = _manager(connector)

    first = await manager.ensure_connected()
    second = await manager.ensure_connected()

    assert first is second
    assert connector.calls == 1
    assert manager.connected


# ═══════════════════════════════════════════════════════════
# Failure and retry
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_failure_raises_and_next_call_retries():
    connector = FakeConnector(outcomes=[OSError("connection refused")])
    manager = _manager(connector)

    with pytest.raises(DatabaseUnavailable) as exc_info:
        await manager.ensure_connected()
    assert "connection refused" in exc_info.value.message
    assert not manager.connected

    engine = await manager.ensure_connected()
    assert engine is connector.engines[0]
    assert connector.calls == 2


@pytest.mark.asyncio
async def test_concurrent_callers_all_see_the_same_failure():
    gate = asyncio.Event()
    connector = FakeConnector(outcomes=[OSError("boom")], gate=gate)
    manager = _manager(connector)

    callers = [asyncio.create_task(manager.ensure_connected()) for _ in range(5)]
    await connector.started.wait()
    gate.set()
    results = await asyncio.gather(*callers, return_exceptions=True)

    assert connector.calls == 1
    assert all(isinstance(r, DatabaseUnavailable) for r in results)


@pytest.mark.asyncio
async def test_timeout_counts_as_failure():
    connector = FakeConnector(outcomes=[5.0])
    manager = _manager(connector, connect_timeout=0.05)

    with pytest.raises(DatabaseUnavailable) as exc_info:
        await manager.ensure_connected()
    assert "timed out" in exc_info.value.message

    # The slow outcome was consumed; the retry connects immediately.
    await manager.ensure_connected()
    assert connector.calls == 2
    assert manager.connected


# ═══════════════════════════════════════════════════════════
# Cancellation and reset
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_attempt():
    gate = asyncio.Event()
    connector = FakeConnector(gate=gate)
    manager = _manager(connector)

    impatient = asyncio.create_task(manager.ensure_connected())
    await connector.started.wait()
    patient = asyncio.create_task(manager.ensure_connected())
    await asyncio.sleep(0)

    impatient.cancel()
    with pytest.raises(asyncio.CancelledError):
        await impatient

    gate.set()
    engine = await patient
    assert engine is connector.engines[0]
    assert connector.calls == 1


@pytest.mark.asyncio
async def test_reset_disposes_and_reconnects():
    connector = FakeConnector()
    manager = _manager(connector)

    first = await manager.ensure_connected()
    await manager.reset()

    assert not manager.connected
    first.dispose.assert_awaited_once()

    second = await manager.ensure_connected()
    assert second is not first
    assert connector.calls == 2


@pytest.mark.asyncio
async def test_failure_after_every_caller_cancelled_is_still_retrieved():
    gate = asyncio.Event()
    connector = FakeConnector(outcomes=[OSError("connection refused")], gate=gate)
    manager = _manager(connector)
    loop = asyncio.get_running_loop()
    reported = []
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    try:
        caller = asyncio.create_task(manager.ensure_connected())
        await connector.started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        del caller

        gate.set()
        for _ in range(5):
            await asyncio.sleep(0)
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert not [c for c in reported if "never retrieved" in c.get("message", "")]
    # The failure was not cached: the next caller starts a new attempt.
    await manager.ensure_connected()
    assert connector.calls == 2


# ═══════════════════════════════════════════════════════════
# Real driver
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_default_connector_against_sqlite(tmp_path):
    manager = ConnectionManager(f"sqlite+aiosqlite:///{tmp_path / 'live.db'}")
    try:
        await manager.ensure_connected()
        await manager.ping()
        async with manager.session() as session:
            assert session.bind is not None
    finally:
        await manager.reset()


@pytest.mark.asyncio
async def test_default_connector_unreachable_database(tmp_path):
    missing = tmp_path / "no" / "such" / "dir" / "db.sqlite"
    manager = ConnectionManager(f"sqlite+aiosqlite:///{missing}")

    with pytest.raises(DatabaseUnavailable):
        await manager.ensure_connected()
    assert not manager.connected
