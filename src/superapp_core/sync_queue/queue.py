from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping

from pydantic import ValidationError

from superapp_core.connectivity import ConnectivityMonitor
from superapp_core.logging import log_error, log_info, log_warning
from superapp_core.storage import AbstractKeyValueStorage
from superapp_core.sync_queue.models import (
    MutationStatus,
    QueuedMutation,
    QueueEnvelope,
    QueueStatus,
    SyncProgress,
    SyncResult,
)

DEFAULT_QUEUE_TTL_SECONDS = 24 * 60 * 60
SKIPPED_OFFLINE = "offline"
SKIPPED_ALREADY_SYNCING = "already_syncing"
_logger = logging.getLogger(__name__)

MutationSender = Callable[[QueuedMutation], Awaitable[object]]


class OfflineSyncQueue:
    """Durable FIFO log of mutations replayed when connectivity returns.

    The log is loaded lazily and kept in memory; every change is written
    back to storage before the method returns. Entries from another context,
    owned by another account or past their TTL are dropped without being
    replayed. A reconnect starts the replay as a background task so the
    connectivity monitor is never blocked by it.
    """

    def __init__(
        self,
        name: str,
        *,
        storage: AbstractKeyValueStorage,
        sender: MutationSender,
        connectivity: ConnectivityMonitor | None = None,
        ttl_seconds: float = DEFAULT_QUEUE_TTL_SECONDS,
        context_key: str | None = None,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Create a queue.

        Args:
            name: Queue name, used to namespace the storage key.
            storage: Where the log is persisted.
            sender: Replays one mutation against the backend.
            connectivity: Monitor whose offline -> online transitions
                trigger ``sync()``. Without one the queue assumes online.
            ttl_seconds: Age after which an entry is discarded unreplayed.
            context_key: Partition the queued entries belong to.
            now_fn: Clock returning epoch seconds.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.name = name
        self._storage = storage
        self._sender = sender
        self._connectivity = connectivity
        self._ttl_seconds = ttl_seconds
        self._context_key = context_key
        self._now = now_fn
        self._state_lock = asyncio.Lock()
        self._sync_lock = asyncio.Lock()
        self._envelope: QueueEnvelope | None = None
        self._is_syncing = False
        self._progress = SyncProgress()
        self._sync_task: asyncio.Task[SyncResult] | None = None
        self._detach: Callable[[], None] | None = None
        if connectivity is not None:
            self._detach = connectivity.add_listener(self.on_connectivity_change)

    @property
    def storage_key(self) -> str:
        return f"offline_queue:{self.name}"

    @property
    def context_key(self) -> str | None:
        return self._context_key

    @property
    def status(self) -> QueueStatus:
        items = [] if self._envelope is None else self._envelope.items
        return QueueStatus(
            is_online=self._is_online(),
            is_syncing=self._is_syncing,
            pending_count=len(items),
            failed_count=sum(
                1 for item in items if item.status == MutationStatus.FAILED
            ),
            progress=self._progress,
        )

    def close(self) -> None:
        """Stop listening to connectivity changes."""
        if self._detach is not None:
            self._detach()
            self._detach = None

    async def shutdown(self) -> None:
        """Stop listening and let an in-flight background replay finish."""
        self.close()
        task = self._sync_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def load(self) -> list[QueuedMutation]:
        """Load (or reload) the log and return a copy of its entries."""
        async with self._state_lock:
            self._envelope = None
            envelope = await self._ensure_loaded()
            return [item.model_copy(deep=True) for item in envelope.items]

    async def pending(self) -> list[QueuedMutation]:
        """Return a copy of the queued entries in replay order."""
        async with self._state_lock:
            envelope = await self._ensure_loaded()
            return [item.model_copy(deep=True) for item in envelope.items]

    async def enqueue(
        self,
        operation: str,
        payload: Mapping[str, object] | None = None,
    ) -> QueuedMutation:
        """Append a mutation to the log without touching the network."""
        async with self._state_lock:
            envelope = await self._ensure_loaded()
            now = self._now()
            mutation = QueuedMutation(
                id=envelope.next_id,
                operation=operation,
                payload=dict(payload or {}),
                context_key=self._context_key,
                user_id=envelope.user_id,
                enqueued_at=now,
                expires_at=now + self._ttl_seconds,
            )
            envelope.next_id += 1
            envelope.items.append(mutation)
            await self._save(envelope)
        log_info(
            _logger,
            "sync_queue.enqueued",
            queue=self.name,
            mutation_id=mutation.id,
            operation=operation,
        )
        return mutation.model_copy(deep=True)

    async def set_context(self, context_key: str | None) -> int:
        """Switch partition; entries of the previous context are discarded.

        Returns:
            Number of discarded entries.
        """
        async with self._state_lock:
            envelope = await self._ensure_loaded()
            if context_key == self._context_key:
                return 0
            discarded = len(envelope.items)
            self._context_key = context_key
            envelope.context_key = context_key
            envelope.items.clear()
            await self._save(envelope)
        if discarded:
            log_warning(
                _logger,
                "sync_queue.context_changed",
                queue=self.name,
                discarded=discarded,
            )
        return discarded

    async def set_owner(self, user_id: str | None) -> str | None:
        """Hand the log to ``user_id`` and return the previous owner.

        Entries captured for a different account are discarded. Entries
        captured while nobody was signed in are adopted by the new owner.
        """
        async with self._state_lock:
            envelope = await self._ensure_loaded()
            previous = envelope.user_id
            if previous == user_id:
                return previous
            discarded = 0
            if previous is not None:
                discarded = len(envelope.items)
                envelope.items.clear()
            for item in envelope.items:
                item.user_id = user_id
            envelope.user_id = user_id
            await self._save(envelope)
        if discarded:
            log_warning(
                _logger,
                "sync_queue.owner_changed",
                queue=self.name,
                discarded=discarded,
            )
        return previous

    async def clear(self) -> None:
        """Drop every entry and remove the persisted log."""
        async with self._state_lock:
            self._envelope = QueueEnvelope(context_key=self._context_key)
            self._progress = SyncProgress()
            await self._storage.delete(self.storage_key)

    async def on_connectivity_change(self, was_online: bool, is_online: bool) -> None:
        """Connectivity listener: replay the log on an offline -> online edge."""
        if was_online or not is_online:
            return
        self.schedule_sync()

    def schedule_sync(self) -> asyncio.Task[SyncResult]:
        """Start a background replay unless one is already running."""
        task = self._sync_task
        if task is None or task.done():
            task = asyncio.create_task(self.sync(), name=f"sync-queue-{self.name}")
            task.add_done_callback(self._on_sync_done)
            self._sync_task = task
        return task

    async def wait_for_sync(self) -> SyncResult | None:
        """Wait for the latest background replay; ``None`` if none started."""
        task = self._sync_task
        if task is None:
            return None
        return await task

    def _on_sync_done(self, task: asyncio.Task[SyncResult]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_error(
                _logger,
                "sync_queue.sync_crashed",
                queue=self.name,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )

    async def sync(self) -> SyncResult:
        """Replay every queued entry once, strictly in enqueue order.

        A failed entry is marked ``failed`` and kept; later entries are still
        attempted. Successful entries are removed from the log. Going offline
        mid-pass stops the replay; untouched entries stay ``pending``.
        """
        if not self._is_online():
            return SyncResult(skipped_reason=SKIPPED_OFFLINE)
        if self._sync_lock.locked():
            return SyncResult(skipped_reason=SKIPPED_ALREADY_SYNCING)

        async with self._sync_lock:
            async with self._state_lock:
                envelope = await self._ensure_loaded()
                if self._purge_locked(envelope):
                    await self._save(envelope)
                batch = list(envelope.items)

            if not batch:
                return SyncResult()

            self._is_syncing = True
            self._progress = SyncProgress(current=0, total=len(batch))
            log_info(
                _logger,
                "sync_queue.sync_started",
                queue=self.name,
                total=len(batch),
            )
            succeeded = 0
            failed = 0
            interrupted = False
            try:
                for index, item in enumerate(batch, start=1):
                    if not self._is_online():
                        interrupted = True
                        log_info(
                            _logger,
                            "sync_queue.sync_interrupted",
                            queue=self.name,
                            remaining=len(batch) - index + 1,
                        )
                        break
                    if not await self._mark_syncing(item):
                        self._progress = SyncProgress(current=index, total=len(batch))
                        continue
                    try:
                        await self._sender(item.model_copy(deep=True))
                    except Exception as exc:
                        failed += 1
                        await self._mark_failed(item, exc)
                    else:
                        succeeded += 1
                        await self._mark_done(item)
                    self._progress = SyncProgress(current=index, total=len(batch))
            finally:
                self._is_syncing = False

        log_info(
            _logger,
            "sync_queue.sync_finished",
            queue=self.name,
            succeeded=succeeded,
            failed=failed,
        )
        return SyncResult(succeeded=succeeded, failed=failed, interrupted=interrupted)

    def _is_online(self) -> bool:
        return self._connectivity is None or self._connectivity.is_online

    def _holds(self, item: QueuedMutation) -> bool:
        return self._envelope is not None and any(
            entry is item for entry in self._envelope.items
        )

    async def _mark_syncing(self, item: QueuedMutation) -> bool:
        async with self._state_lock:
            if self._envelope is None or not self._holds(item):
                return False
            item.status = MutationStatus.SYNCING
            await self._save(self._envelope)
            return True

    async def _mark_done(self, item: QueuedMutation) -> None:
        async with self._state_lock:
            if self._envelope is None or not self._holds(item):
                return
            item.status = MutationStatus.DONE
            self._envelope.items = [
                entry for entry in self._envelope.items if entry is not item
            ]
            await self._save(self._envelope)

    async def _mark_failed(self, item: QueuedMutation, exc: Exception) -> None:
        log_warning(
            _logger,
            "sync_queue.replay_failed",
            queue=self.name,
            mutation_id=item.id,
            operation=item.operation,
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
        async with self._state_lock:
            if self._envelope is None or not self._holds(item):
                return
            item.status = MutationStatus.FAILED
            item.attempts += 1
            item.last_error = f"{exc.__class__.__name__}: {exc}"
            await self._save(self._envelope)

    async def _ensure_loaded(self) -> QueueEnvelope:
        if self._envelope is not None:
            return self._envelope

        envelope = await self._read()
        changed = False
        if envelope.context_key != self._context_key:
            if envelope.items:
                log_warning(
                    _logger,
                    "sync_queue.context_mismatch",
                    queue=self.name,
                    discarded=len(envelope.items),
                )
            envelope = QueueEnvelope(
                context_key=self._context_key,
                next_id=envelope.next_id,
            )
            changed = True
        for item in envelope.items:
            # An interrupted pass leaves entries in syncing; they were not acknowledged.
            if item.status == MutationStatus.SYNCING:
                item.status = MutationStatus.PENDING
                changed = True
        if self._purge_locked(envelope):
            changed = True
        self._envelope = envelope
        if changed:
            await self._save(envelope)
        return envelope

    async def _read(self) -> QueueEnvelope:
        raw = await self._storage.get(self.storage_key)
        if raw is None:
            return QueueEnvelope(context_key=self._context_key)
        try:
            envelope = QueueEnvelope.model_validate(raw)
        except ValidationError as exc:
            log_warning(
                _logger,
                "sync_queue.corrupt_log_discarded",
                queue=self.name,
                error=str(exc),
            )
            return QueueEnvelope(context_key=self._context_key)
        envelope.items.sort(key=lambda item: item.id)
        return envelope

    def _purge_locked(self, envelope: QueueEnvelope) -> int:
        now = self._now()
        kept = [
            item
            for item in envelope.items
            if not item.is_expired(now)
            and item.context_key == self._context_key
            and item.user_id == envelope.user_id
        ]
        purged = len(envelope.items) - len(kept)
        if purged:
            envelope.items = kept
            log_info(
                _logger,
                "sync_queue.entries_purged",
                queue=self.name,
                purged=purged,
            )
        return purged

    async def _save(self, envelope: QueueEnvelope) -> None:
        await self._storage.set(self.storage_key, envelope.model_dump(mode="json"))
