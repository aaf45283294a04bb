from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from typing import cast

import httpx

from superapp_core.headers import build_backend_headers
from superapp_core.logging import log_exception, log_info
from superapp_core.retry import build_interruptible_sleep

SOURCE_RUNTIME = "runtime"
SOURCE_PROBE = "probe"
_logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool, bool], Awaitable[None]]
OnlineProbe = Callable[[], bool] | Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class ConnectivitySnapshot:
    """Latest known connectivity state and where it came from."""

    is_online: bool
    changed_at: float
    source: str


async def _resolve_probe(probe: OnlineProbe) -> bool:
    result = probe()
    if inspect.isawaitable(result):
        awaited = await cast(Awaitable[object], result)
        return bool(awaited)
    return bool(result)


def make_http_probe(
    *,
    client: httpx.AsyncClient,
    url: str,
    timeout_seconds: float,
    api_key: str | None = None,
    headers: Mapping[str, str] | None = None,
) -> OnlineProbe:
    """Build a probe that reports online when ``url`` answers below HTTP 500."""
    request_headers = dict(headers or {})
    if api_key is not None:
        request_headers = build_backend_headers(
            api_key=api_key, extra_headers=request_headers
        )

    async def _probe() -> bool:
        try:
            response = await client.get(
                url,
                headers=request_headers,
                timeout=timeout_seconds,
            )
        except httpx.RequestError:
            return False
        return response.status_code < 500

    _probe.__name__ = "http_probe"
    return _probe


async def run_connectivity_loop(
    *,
    check_once: Callable[[], Awaitable[object]],
    stop_event: asyncio.Event,
    interval_seconds: float,
) -> None:
    """Poll connectivity periodically until shutdown is requested."""
    sleep = build_interruptible_sleep(stop_event)
    interval = max(interval_seconds, 0.01)
    while not stop_event.is_set():
        await check_once()
        await sleep(interval)


class ConnectivityMonitor:
    """Track online/offline state and notify listeners of transitions."""

    def __init__(
        self,
        *,
        probe: OnlineProbe | None = None,
        interval_seconds: float = 10.0,
        initially_online: bool = True,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Initialize connectivity state and optional polling.

        Args:
            probe: Optional sync/async callable polled in the background.
            interval_seconds: Background polling interval in seconds.
            initially_online: State assumed before any report arrives.
            now_fn: Clock used to stamp state changes.
        """
        self._probe = probe
        self._interval_seconds = max(interval_seconds, 0.01)
        self._now = now_fn
        self._snapshot = ConnectivitySnapshot(
            is_online=initially_online,
            changed_at=now_fn(),
            source="initial",
        )
        self._listeners: list[ConnectivityListener] = []
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_online(self) -> bool:
        return self._snapshot.is_online

    @property
    def snapshot(self) -> ConnectivitySnapshot:
        return self._snapshot

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a transition listener and return its cleanup function."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def set_online(self, online: bool, *, source: str = SOURCE_RUNTIME) -> bool:
        """Record a connectivity report; return whether the state changed.

        Listeners run after the new state is recorded, so a listener that
        checks ``is_online`` sees the new value. Listener errors are logged
        and suppressed.
        """
        previous = self._snapshot
        if previous.is_online == online:
            return False
        self._snapshot = ConnectivitySnapshot(
            is_online=online,
            changed_at=self._now(),
            source=source,
        )
        log_info(
            _logger,
            "connectivity.changed",
            online=online,
            source=source,
        )
        for listener in tuple(self._listeners):
            listener_name = getattr(listener, "__name__", listener.__class__.__name__)
            try:
                await listener(previous.is_online, online)
            except Exception:
                log_exception(
                    _logger,
                    "connectivity.listener_failed",
                    source=source,
                    listener=listener_name,
                )
        return True

    async def check_once(self, *, source: str = SOURCE_PROBE) -> bool:
        """Run the probe once and record its verdict; probe errors mean offline."""
        if self._probe is None:
            return self.is_online
        try:
            online = await _resolve_probe(self._probe)
        except Exception as exc:
            log_info(
                _logger,
                "connectivity.probe_failed",
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            online = False
        await self.set_online(online, source=source)
        return online

    async def _background_loop(self) -> None:
        await run_connectivity_loop(
            check_once=self.check_once,
            stop_event=self._stop_event,
            interval_seconds=self._interval_seconds,
        )

    async def start_background(self) -> None:
        """Start probe polling if a probe is configured and not running."""
        if self._probe is None:
            return
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._background_loop(),
            name="connectivity-monitor",
        )

    async def stop_background(self) -> None:
        """Stop probe polling and await task completion."""
        self._stop_event.set()
        task = self._task
        if task is None:
            return
        grace_seconds = self._interval_seconds + 5.0
        try:
            await asyncio.wait_for(task, timeout=grace_seconds)
        except TimeoutError:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._task = None
