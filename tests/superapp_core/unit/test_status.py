from __future__ import annotations

import pytest

import superapp_core.circuit_breaker.breaker as breaker_mod
import superapp_core.circuit_breaker.storage as storage_mod
import superapp_core.status as status_mod
from superapp_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from superapp_core.connectivity import ConnectivityMonitor
from superapp_core.errors import NetworkFailure
from superapp_core.status import ConnectionStatusReporter
from superapp_core.storage import InMemoryKeyValueStorage
from superapp_core.sync_queue import OfflineSyncQueue, QueuedMutation
from tests.superapp_core.support.fakes import FakeClock, FakeUtcClock

pytestmark = pytest.mark.asyncio


@pytest.fixture
def utc_clock(monkeypatch: pytest.MonkeyPatch) -> FakeUtcClock:
    clock = FakeUtcClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", clock.now)
    monkeypatch.setattr(storage_mod, "_utcnow", clock.now)
    monkeypatch.setattr(status_mod, "_utcnow", clock.now)
    return clock


async def _fail() -> None:
    raise NetworkFailure("down", http_status=503)


async def test_snapshot_without_queue_reports_breaker_only() -> None:
    breaker = CircuitBreaker("backend")
    reporter = ConnectionStatusReporter(breaker=breaker)

    status = await reporter.snapshot()

    assert status.breaker_state == CircuitState.CLOSED
    assert status.open_for_seconds is None
    assert status.reset_suggested is False
    assert status.is_online is True
    assert status.pending_count == 0


async def test_reset_is_suggested_after_long_outage(utc_clock: FakeUtcClock) -> None:
    breaker = CircuitBreaker(
        "backend",
        config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=30.0),
    )
    reporter = ConnectionStatusReporter(breaker=breaker, reset_hint_seconds=60.0)
    with pytest.raises(NetworkFailure):
        await breaker.execute(_fail)

    utc_clock.advance(59.0)
    early = await reporter.snapshot()
    utc_clock.advance(1.0)
    late = await reporter.snapshot()

    assert early.breaker_state == CircuitState.OPEN
    assert early.failure_count == 1
    assert early.open_for_seconds == pytest.approx(59.0)
    assert early.reset_suggested is False
    assert late.reset_suggested is True


async def test_reset_connection_closes_breaker_and_replays_queue(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    sent: list[str] = []

    async def _sender(mutation: QueuedMutation) -> object:
        sent.append(mutation.operation)
        return None

    breaker = CircuitBreaker(
        "backend",
        config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=300.0),
    )
    monitor = ConnectivityMonitor(now_fn=clock)
    queue = OfflineSyncQueue(
        "mutations",
        storage=kv_storage,
        sender=_sender,
        connectivity=monitor,
        now_fn=clock,
    )
    await queue.enqueue("checkout")
    with pytest.raises(NetworkFailure):
        await breaker.execute(_fail)
    reporter = ConnectionStatusReporter(
        breaker=breaker, queue=queue, connectivity=monitor
    )

    before = await reporter.snapshot()
    after = await reporter.reset_connection()

    assert before.breaker_state == CircuitState.OPEN
    assert before.pending_count == 1
    assert after.breaker_state == CircuitState.CLOSED
    assert after.failure_count == 0
    assert after.pending_count == 0
    assert sent == ["checkout"]


async def test_reset_connection_offline_leaves_queue(
    kv_storage: InMemoryKeyValueStorage,
    clock: FakeClock,
) -> None:
    sent: list[str] = []

    async def _sender(mutation: QueuedMutation) -> object:
        sent.append(mutation.operation)
        return None

    monitor = ConnectivityMonitor(initially_online=False, now_fn=clock)
    queue = OfflineSyncQueue(
        "mutations",
        storage=kv_storage,
        sender=_sender,
        connectivity=monitor,
        now_fn=clock,
    )
    await queue.enqueue("checkout")
    reporter = ConnectionStatusReporter(
        breaker=CircuitBreaker("backend"), queue=queue, connectivity=monitor
    )

    status = await reporter.reset_connection()

    assert status.is_online is False
    assert status.pending_count == 1
    assert sent == []
