from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from superapp_core.logging import log_info
from superapp_core.storage import AbstractKeyValueStorage

DEFAULT_CACHE_TTL_SECONDS = 300.0
_logger = logging.getLogger(__name__)


class CacheEnvelope(BaseModel):
    data: Any
    timestamp: float
    user_id: str | None = None


class UserDataCache:
    """Per-user cache of backend reads with TTL and ownership checks."""

    def __init__(
        self,
        *,
        storage: AbstractKeyValueStorage,
        namespace: str = "cache",
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._storage = storage
        self._prefix = f"{namespace}:"
        self._ttl_seconds = ttl_seconds
        self._now = now_fn

    def _storage_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def set(
        self,
        key: str,
        data: Any,
        *,
        user_id: str | None = None,
    ) -> None:
        envelope = CacheEnvelope(data=data, timestamp=self._now(), user_id=user_id)
        await self._storage.set(
            self._storage_key(key), envelope.model_dump(mode="json")
        )

    async def get(self, key: str, *, user_id: str | None = None) -> Any | None:
        """Return cached data, or ``None`` when missing, stale or not owned.

        Stale, unreadable and foreign-owned entries are deleted on read.
        """
        storage_key = self._storage_key(key)
        raw = await self._storage.get(storage_key)
        if raw is None:
            return None
        try:
            envelope = CacheEnvelope.model_validate(raw)
        except ValidationError:
            await self._storage.delete(storage_key)
            return None
        if envelope.user_id != user_id:
            log_info(_logger, "cache.ownership_mismatch", key=key)
            await self._storage.delete(storage_key)
            return None
        if self._now() - envelope.timestamp >= self._ttl_seconds:
            await self._storage.delete(storage_key)
            return None
        return envelope.data

    async def invalidate(self, key: str) -> None:
        await self._storage.delete(self._storage_key(key))

    async def clear_user(self, user_id: str | None) -> int:
        """Delete every entry owned by ``user_id``; return how many."""
        removed = 0
        for storage_key in await self._storage.keys(self._prefix):
            raw = await self._storage.get(storage_key)
            owner = raw.get("user_id") if isinstance(raw, dict) else None
            if owner == user_id or not isinstance(raw, dict):
                await self._storage.delete(storage_key)
                removed += 1
        if removed:
            log_info(_logger, "cache.user_cleared", removed=removed)
        return removed

    async def clear(self) -> int:
        keys = await self._storage.keys(self._prefix)
        for storage_key in keys:
            await self._storage.delete(storage_key)
        return len(keys)
