"""Offline sync queue and persisted cart."""

from superapp_core.sync_queue.cart import CartEnvelope, PersistedCart
from superapp_core.sync_queue.models import (
    MutationStatus,
    QueuedMutation,
    QueueEnvelope,
    QueueStatus,
    SyncProgress,
    SyncResult,
)
from superapp_core.sync_queue.queue import MutationSender, OfflineSyncQueue

__all__ = [
    "CartEnvelope",
    "MutationSender",
    "MutationStatus",
    "OfflineSyncQueue",
    "PersistedCart",
    "QueueEnvelope",
    "QueueStatus",
    "QueuedMutation",
    "SyncProgress",
    "SyncResult",
]
