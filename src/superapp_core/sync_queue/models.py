"""Persisted records and status snapshots of the offline sync queue."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class MutationStatus(StrEnum):
    """Replay status of one queued mutation."""

    PENDING = "pending"
    SYNCING = "syncing"
    DONE = "done"
    FAILED = "failed"


class QueuedMutation(BaseModel):
    """One mutation captured while offline.

    ``id`` comes from a per-queue sequence, so sorting by it gives enqueue
    order.
    """

    id: int
    operation: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: MutationStatus = MutationStatus.PENDING
    context_key: str | None = None
    user_id: str | None = None
    enqueued_at: float
    expires_at: float | None = None
    attempts: int = 0
    last_error: str | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class QueueEnvelope(BaseModel):
    """Persisted document holding the ordered mutation log.

    ``user_id`` is the account the entries were captured for; only that
    account may replay them.
    """

    context_key: str | None = None
    user_id: str | None = None
    next_id: int = 1
    items: list[QueuedMutation] = Field(default_factory=list)


@dataclass(frozen=True)
class SyncProgress:
    current: int = 0
    total: int = 0


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one replay pass."""

    succeeded: int = 0
    failed: int = 0
    skipped_reason: str | None = None
    interrupted: bool = False


@dataclass(frozen=True)
class QueueStatus:
    """Read-only snapshot polled by status badges."""

    is_online: bool
    is_syncing: bool
    pending_count: int
    failed_count: int
    progress: SyncProgress
