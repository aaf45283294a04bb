"""Wiring of the resilience layer into one client object.

``ResilientBackend`` owns one circuit breaker shared by every call, the
session guardian, the offline mutation queue, the persisted cart, the user
cache and the connectivity monitor. ``call`` always goes to the network;
``mutate`` queues while offline and sends otherwise.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from superapp_core.backend import AuthClient, FunctionsClient, derive_auth_url
from superapp_core.backend.constants import AUTH_HEALTH_PATH
from superapp_core.cache import UserDataCache
from superapp_core.circuit_breaker import (
    BreakerListener,
    CircuitBreaker,
    LoggingBreakerListener,
)
from superapp_core.connectivity import (
    ConnectivityMonitor,
    OnlineProbe,
    make_http_probe,
)
from superapp_core.logging import log_info
from superapp_core.session import SessionGuardian, SessionListener, SessionToken
from superapp_core.settings import CoreSettings
from superapp_core.status import ConnectionStatusReporter
from superapp_core.storage import AbstractKeyValueStorage, build_storage
from superapp_core.sync_queue import OfflineSyncQueue, PersistedCart, QueuedMutation

BACKEND_BREAKER_NAME = "backend"
MUTATION_QUEUE_NAME = "mutations"
_logger = logging.getLogger(__name__)


class ResilientBackend:
    def __init__(
        self,
        *,
        settings: CoreSettings,
        http_client: httpx.AsyncClient,
        storage: AbstractKeyValueStorage | None = None,
        probe: OnlineProbe | None = None,
        session_listeners: Sequence[SessionListener] = (),
        breaker_listeners: Sequence[BreakerListener] = (),
        owns_http_client: bool = False,
    ) -> None:
        self.settings = settings
        self._http_client = http_client
        self._owns_http_client = owns_http_client
        self.storage = storage or build_storage(settings.storage_path)

        self.breaker = CircuitBreaker(
            BACKEND_BREAKER_NAME,
            config=settings.breaker_config(),
            listeners=[LoggingBreakerListener(), *breaker_listeners],
        )
        self.functions = FunctionsClient(
            client=http_client,
            backend_url=settings.backend_url,
            api_key=settings.backend_api_key,
            timeout_seconds=settings.request_timeout_seconds,
        )
        self.auth = AuthClient(
            client=http_client,
            backend_url=settings.backend_url,
            api_key=settings.backend_api_key,
        )
        self.connectivity = ConnectivityMonitor(
            probe=probe,
            interval_seconds=settings.connectivity_poll_seconds,
        )
        self.guardian = SessionGuardian(
            auth=self.auth,
            functions=self.functions,
            breaker=self.breaker,
            storage=self.storage,
            refresh_threshold_seconds=settings.session_refresh_threshold_seconds,
            auth_retries=settings.session_auth_retries,
            listeners=[self, *session_listeners],
        )
        self.queue = OfflineSyncQueue(
            MUTATION_QUEUE_NAME,
            storage=self.storage,
            sender=self._replay,
            connectivity=self.connectivity,
            ttl_seconds=settings.offline_queue_ttl_seconds,
        )
        self.cart = PersistedCart(
            storage=self.storage,
            ttl_seconds=settings.cart_ttl_seconds,
        )
        self.cache = UserDataCache(
            storage=self.storage,
            ttl_seconds=settings.cache_ttl_seconds,
        )
        self.status = ConnectionStatusReporter(
            breaker=self.breaker,
            queue=self.queue,
            connectivity=self.connectivity,
            reset_hint_seconds=settings.breaker_reset_hint_seconds,
        )

    async def start(self) -> None:
        """Restore persisted state and start connectivity polling."""
        session = await self.guardian.restore()
        await self.queue.load()
        if session is not None:
            await self._adopt_owner(session.user_id)
        await self.connectivity.start_background()

    async def stop(self) -> None:
        await self.connectivity.stop_background()
        await self.queue.shutdown()
        if self._owns_http_client:
            await self._http_client.aclose()

    async def call(
        self,
        operation: str,
        payload: Mapping[str, object] | None = None,
    ) -> object:
        """Invoke a backend function now, with session and breaker protection."""
        return await self.guardian.invoke_with_session(operation, payload)

    async def mutate(
        self,
        operation: str,
        payload: Mapping[str, object] | None = None,
    ) -> object | QueuedMutation:
        """Send a mutation, or queue it while offline.

        Returns:
            The backend response, or the ``QueuedMutation`` when queued.
        """
        if not self.connectivity.is_online:
            return await self.queue.enqueue(operation, payload)
        return await self.call(operation, payload)

    async def switch_context(self, context_key: str) -> list[dict[str, Any]]:
        """Move queue and cart to ``context_key`` and return the restored cart."""
        await self.queue.set_context(context_key)
        return await self.cart.load(context_key)

    async def sign_in(self, session: SessionToken) -> None:
        """Install ``session``; state left by another account is discarded."""
        await self.guardian.sign_in(session)
        await self._adopt_owner(session.user_id)

    async def sign_out(self) -> None:
        await self.guardian.sign_out()

    async def on_session_expired(self, reason: str) -> None:
        _ = reason

    async def on_signed_out(self, user_id: str | None) -> None:
        """Clear every piece of local state left by the signed-out user."""
        await self.queue.clear()
        await self.cart.clear()
        removed = await self.cache.clear_user(user_id)
        log_info(
            _logger,
            "client.local_state_cleared",
            user_id=user_id,
            cache_entries=removed,
        )

    async def _adopt_owner(self, user_id: str | None) -> None:
        previous = await self.queue.set_owner(user_id)
        if previous is None or previous == user_id:
            return
        await self.cart.clear()
        removed = await self.cache.clear_user(previous)
        log_info(
            _logger,
            "client.previous_user_state_cleared",
            previous_user_id=previous,
            cache_entries=removed,
        )

    async def _replay(self, mutation: QueuedMutation) -> object:
        return await self.guardian.invoke_with_session(
            mutation.operation, mutation.payload
        )


def build_resilient_backend(
    settings: CoreSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    storage: AbstractKeyValueStorage | None = None,
    probe: OnlineProbe | None = None,
    session_listeners: Sequence[SessionListener] = (),
) -> ResilientBackend:
    """Build a ``ResilientBackend`` from settings.

    Without an explicit client one is created (and closed by ``stop()``).
    Without an explicit probe the backend auth health endpoint is polled.
    """
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(
        timeout=settings.request_timeout_seconds
    )
    if probe is None:
        probe = make_http_probe(
            client=client,
            url=derive_auth_url(settings.backend_url, AUTH_HEALTH_PATH),
            timeout_seconds=settings.request_timeout_seconds,
            api_key=settings.backend_api_key,
        )
    return ResilientBackend(
        settings=settings,
        http_client=client,
        storage=storage,
        probe=probe,
        session_listeners=session_listeners,
        owns_http_client=owns_client,
    )
