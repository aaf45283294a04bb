"""State storage for circuit breakers.

Storage is decoupled from breaker logic. Breaker state is never persisted
across process restarts; the in-memory backend is the only one shipped, but
custom backends can implement the interface to share one view of backend
health between several breaker instances.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace
from datetime import UTC, datetime

from superapp_core.circuit_breaker.state import BreakerSnapshot, CircuitState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AbstractBreakerStorage(ABC):
    """Abstract breaker storage interface."""

    @abstractmethod
    async def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current breaker snapshot for ``name``."""

    @abstractmethod
    async def record_success(self, name: str) -> BreakerSnapshot:
        """Record a successful call and return the updated snapshot."""

    @abstractmethod
    async def record_failure(self, name: str) -> BreakerSnapshot:
        """Record a failed call and return the updated snapshot."""

    @abstractmethod
    async def force_open(self, name: str) -> BreakerSnapshot:
        """Force breaker ``name`` into ``OPEN`` state."""

    @abstractmethod
    async def mark_half_open(self, name: str) -> BreakerSnapshot:
        """Move breaker ``name`` into ``HALF_OPEN`` for a single probe."""

    @abstractmethod
    async def reset(self, name: str) -> BreakerSnapshot:
        """Reset breaker ``name`` to a healthy ``CLOSED`` state."""


def _healthy_snapshot(name: str) -> BreakerSnapshot:
    return BreakerSnapshot(
        name=name,
        state=CircuitState.CLOSED,
        failure_count=0,
        last_failure_at=None,
        opened_at=None,
    )


class InMemoryBreakerStorage(AbstractBreakerStorage):
    """In-memory storage with one cooperative lock per breaker name."""

    def __init__(self) -> None:
        self._snapshots: dict[str, BreakerSnapshot] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _current(self, name: str) -> BreakerSnapshot:
        return self._snapshots.get(name) or _healthy_snapshot(name)

    async def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current snapshot, creating a default one if missing."""
        async with self._locks[name]:
            snapshot = self._current(name)
            self._snapshots[name] = snapshot
            return snapshot

    async def record_success(self, name: str) -> BreakerSnapshot:
        """Record a successful call.

        Already-healthy snapshots are returned unchanged to avoid hot-path
        writes.
        """
        async with self._locks[name]:
            snapshot = self._current(name)
            if snapshot == _healthy_snapshot(name):
                self._snapshots[name] = snapshot
                return snapshot
            updated = _healthy_snapshot(name)
            self._snapshots[name] = updated
            return updated

    async def record_failure(self, name: str) -> BreakerSnapshot:
        """Increment the failure counter and stamp ``last_failure_at``."""
        async with self._locks[name]:
            snapshot = self._current(name)
            updated = replace(
                snapshot,
                failure_count=snapshot.failure_count + 1,
                last_failure_at=_utcnow(),
            )
            self._snapshots[name] = updated
            return updated

    async def force_open(self, name: str) -> BreakerSnapshot:
        """Force the circuit open, keeping counters and the last failure time.

        ``opened_at`` survives failed probes so it reflects the whole outage.
        """
        async with self._locks[name]:
            snapshot = self._current(name)
            opened_at = snapshot.opened_at or _utcnow()
            updated = replace(snapshot, state=CircuitState.OPEN, opened_at=opened_at)
            self._snapshots[name] = updated
            return updated

    async def mark_half_open(self, name: str) -> BreakerSnapshot:
        """Flag the single in-flight probe; counters are left untouched."""
        async with self._locks[name]:
            snapshot = self._current(name)
            updated = replace(snapshot, state=CircuitState.HALF_OPEN)
            self._snapshots[name] = updated
            return updated

    async def reset(self, name: str) -> BreakerSnapshot:
        """Reset breaker state and counters to a healthy default snapshot."""
        async with self._locks[name]:
            updated = _healthy_snapshot(name)
            self._snapshots[name] = updated
            return updated
