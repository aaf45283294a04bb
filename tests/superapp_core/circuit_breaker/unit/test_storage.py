from __future__ import annotations

import pytest

import superapp_core.circuit_breaker.storage as storage_mod
from superapp_core.circuit_breaker import CircuitState, InMemoryBreakerStorage
from tests.superapp_core.support.fakes import FakeUtcClock

pytestmark = pytest.mark.asyncio


async def test_unknown_breaker_starts_closed() -> None:
    storage = InMemoryBreakerStorage()

    snapshot = await storage.get_state("svc")

    assert snapshot.name == "svc"
    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.last_failure_at is None


async def test_record_failure_counts_and_stamps(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = FakeUtcClock()
    monkeypatch.setattr(storage_mod, "_utcnow", clock.now)
    storage = InMemoryBreakerStorage()

    await storage.record_failure("svc")
    clock.advance(3.0)
    snapshot = await storage.record_failure("svc")

    assert snapshot.failure_count == 2
    assert snapshot.last_failure_at == clock.now()
    assert snapshot.state == CircuitState.CLOSED


async def test_record_success_resets_non_healthy_snapshot() -> None:
    storage = InMemoryBreakerStorage()
    await storage.record_failure("svc")
    await storage.force_open("svc")

    snapshot = await storage.record_success("svc")

    assert snapshot.state == CircuitState.CLOSED
    assert snapshot.failure_count == 0
    assert snapshot.last_failure_at is None
    assert snapshot.opened_at is None


async def test_force_open_keeps_first_opened_at(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = FakeUtcClock()
    monkeypatch.setattr(storage_mod, "_utcnow", clock.now)
    storage = InMemoryBreakerStorage()

    first = await storage.force_open("svc")
    clock.advance(10.0)
    await storage.mark_half_open("svc")
    second = await storage.force_open("svc")

    assert second.state == CircuitState.OPEN
    assert second.opened_at == first.opened_at


async def test_mark_half_open_keeps_counters() -> None:
    storage = InMemoryBreakerStorage()
    await storage.record_failure("svc")
    await storage.force_open("svc")

    snapshot = await storage.mark_half_open("svc")

    assert snapshot.state == CircuitState.HALF_OPEN
    assert snapshot.failure_count == 1


async def test_breakers_are_isolated_by_name() -> None:
    storage = InMemoryBreakerStorage()
    await storage.record_failure("a")
    await storage.force_open("a")

    assert (await storage.get_state("b")).state == CircuitState.CLOSED
    reset = await storage.reset("a")
    assert reset.state == CircuitState.CLOSED
    assert reset.failure_count == 0
