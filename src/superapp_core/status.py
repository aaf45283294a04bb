from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from superapp_core.circuit_breaker import CircuitBreaker, CircuitState
from superapp_core.connectivity import ConnectivityMonitor
from superapp_core.logging import log_info
from superapp_core.sync_queue import OfflineSyncQueue, SyncProgress

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConnectionStatus:
    """Everything a status badge needs, captured at one point in time."""

    breaker_state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
    open_for_seconds: float | None
    reset_suggested: bool
    is_online: bool
    is_syncing: bool
    pending_count: int
    failed_count: int
    sync_progress: SyncProgress


class ConnectionStatusReporter:
    """Read-only status view plus the manual "reset connection" action."""

    def __init__(
        self,
        *,
        breaker: CircuitBreaker,
        queue: OfflineSyncQueue | None = None,
        connectivity: ConnectivityMonitor | None = None,
        reset_hint_seconds: float = 60.0,
    ) -> None:
        self._breaker = breaker
        self._queue = queue
        self._connectivity = connectivity
        self._reset_hint_seconds = reset_hint_seconds

    async def snapshot(self) -> ConnectionStatus:
        stats = await self._breaker.get_stats()
        open_for: float | None = None
        if stats.state != CircuitState.CLOSED and stats.opened_at is not None:
            open_for = max((_utcnow() - stats.opened_at).total_seconds(), 0.0)

        if self._queue is not None:
            queue_status = self._queue.status
            is_online = queue_status.is_online
            is_syncing = queue_status.is_syncing
            pending_count = queue_status.pending_count
            failed_count = queue_status.failed_count
            progress = queue_status.progress
        else:
            is_online = True
            is_syncing = False
            pending_count = 0
            failed_count = 0
            progress = SyncProgress()
        if self._connectivity is not None:
            is_online = self._connectivity.is_online

        return ConnectionStatus(
            breaker_state=stats.state,
            failure_count=stats.failure_count,
            last_failure_at=stats.last_failure_at,
            open_for_seconds=open_for,
            reset_suggested=(
                open_for is not None and open_for >= self._reset_hint_seconds
            ),
            is_online=is_online,
            is_syncing=is_syncing,
            pending_count=pending_count,
            failed_count=failed_count,
            sync_progress=progress,
        )

    async def reset_connection(self) -> ConnectionStatus:
        """Close the breaker and, when online, replay the offline queue."""
        before = await self._breaker.get_stats()
        await self._breaker.reset()
        log_info(
            _logger,
            "status.connection_reset",
            previous_state=before.state.value,
            previous_failures=before.failure_count,
        )
        if self._queue is not None and self._queue.status.is_online:
            await self._queue.sync()
        return await self.snapshot()
