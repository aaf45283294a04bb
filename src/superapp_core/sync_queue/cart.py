"""Persisted cart scoped to one context (for example one restaurant).

The cart is saved as a ``{items, context_key, expires_at}`` envelope. It is
only handed back when the caller's context matches the recorded one and the
envelope is younger than its TTL; anything else is deleted on load, so items
from an unrelated session never leak into the current one.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from superapp_core.logging import log_info, log_warning
from superapp_core.storage import AbstractKeyValueStorage

DEFAULT_CART_TTL_SECONDS = 24 * 60 * 60
_logger = logging.getLogger(__name__)


class CartEnvelope(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list)
    context_key: str
    saved_at: float
    expires_at: float


class PersistedCart:
    """Save and reload cart items across restarts with context and TTL checks."""

    def __init__(
        self,
        *,
        storage: AbstractKeyValueStorage,
        namespace: str = "cart",
        ttl_seconds: float = DEFAULT_CART_TTL_SECONDS,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._storage = storage
        self._key = f"{namespace}:current"
        self._ttl_seconds = ttl_seconds
        self._now = now_fn

    @property
    def storage_key(self) -> str:
        return self._key

    async def save(
        self,
        context_key: str,
        items: Sequence[Mapping[str, Any]],
    ) -> CartEnvelope | None:
        """Persist ``items`` for ``context_key``; an empty cart is deleted."""
        if not items:
            await self.clear()
            return None
        now = self._now()
        envelope = CartEnvelope(
            items=[dict(item) for item in items],
            context_key=context_key,
            saved_at=now,
            expires_at=now + self._ttl_seconds,
        )
        await self._storage.set(self._key, envelope.model_dump(mode="json"))
        return envelope

    async def load(self, context_key: str) -> list[dict[str, Any]]:
        """Return the saved items for ``context_key`` or an empty cart."""
        raw = await self._storage.get(self._key)
        if raw is None:
            return []
        try:
            envelope = CartEnvelope.model_validate(raw)
        except ValidationError as exc:
            log_warning(_logger, "cart.corrupt_discarded", error=str(exc))
            await self.clear()
            return []

        if envelope.context_key != context_key:
            log_info(
                _logger,
                "cart.context_mismatch_discarded",
                saved_context=envelope.context_key,
                current_context=context_key,
                items=len(envelope.items),
            )
            await self.clear()
            return []
        if self._now() >= envelope.expires_at:
            log_info(
                _logger,
                "cart.expired_discarded",
                context=context_key,
                items=len(envelope.items),
            )
            await self.clear()
            return []
        return envelope.items

    async def clear(self) -> None:
        await self._storage.delete(self._key)
