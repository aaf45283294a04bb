"""Core circuit breaker implementation."""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from superapp_core.circuit_breaker.exceptions import CircuitOpenError
from superapp_core.circuit_breaker.metrics import BreakerListener
from superapp_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from superapp_core.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)
from superapp_core.logging import log_exception

T = TypeVar("T")
P = ParamSpec("P")
_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _ProbeGate:
    """Allow at most one in-flight half-open probe per breaker instance."""

    def __init__(self) -> None:
        self._held = False

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Failures required while ``CLOSED`` before opening.
        recovery_timeout: Seconds after the last failure before a probe is
            allowed while ``OPEN``.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")


class CircuitBreaker:
    """Gate in front of backend calls shared by every caller of one client.

    The breaker never retries. It either rejects a call up front with
    ``CircuitOpenError`` or runs it and re-raises whatever the call raised.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Breaker name used for storage and log events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            storage: State storage backend. Defaults to in-memory storage.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._storage = InMemoryBreakerStorage() if storage is None else storage
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._probe_gate = _ProbeGate()

    async def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        for listener in self._listeners:
            try:
                await listener.on_state_change(self.name, old, new)
            except Exception:
                log_exception(
                    _logger, "circuit_breaker.listener_failed", breaker=self.name
                )

    async def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(self.name)
            except Exception:
                log_exception(
                    _logger, "circuit_breaker.listener_failed", breaker=self.name
                )

    async def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_succeeded(self.name, elapsed)
            except Exception:
                log_exception(
                    _logger, "circuit_breaker.listener_failed", breaker=self.name
                )

    async def _emit_call_failed(self, exc: Exception, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_failed(self.name, exc, elapsed)
            except Exception:
                log_exception(
                    _logger, "circuit_breaker.listener_failed", breaker=self.name
                )

    @staticmethod
    def _retry_after(snapshot: BreakerSnapshot, now: datetime, timeout: float) -> float:
        anchor = snapshot.last_failure_at or snapshot.opened_at or now
        elapsed = (now - anchor).total_seconds()
        return max(timeout - elapsed, 0.0)

    async def get_stats(self) -> BreakerSnapshot:
        """Return the current breaker snapshot without changing it."""
        return await self._storage.get_state(self.name)

    async def reset(self) -> BreakerSnapshot:
        """Force the breaker ``CLOSED`` with a zero failure count."""
        previous = await self._storage.get_state(self.name)
        snapshot = await self._storage.reset(self.name)
        if previous.state != CircuitState.CLOSED:
            await self._emit_state_change(previous.state, CircuitState.CLOSED)
        return snapshot

    async def execute(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Async callable performing one backend call.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            Exception: The original exception from ``func`` when it is attempted
                and fails.
        """
        snapshot = await self._storage.get_state(self.name)
        is_probe = False

        if snapshot.state != CircuitState.CLOSED:
            if snapshot.state == CircuitState.OPEN:
                retry_after = self._retry_after(
                    snapshot, _utcnow(), self.config.recovery_timeout
                )
                if retry_after > 0:
                    await self._emit_call_rejected()
                    raise CircuitOpenError(self.name, retry_after=retry_after)

            if not self._probe_gate.try_acquire():
                await self._emit_call_rejected()
                raise CircuitOpenError(self.name, retry_after=0.0)
            is_probe = True

        try:
            if is_probe and snapshot.state == CircuitState.OPEN:
                await self._storage.mark_half_open(self.name)
                await self._emit_state_change(CircuitState.OPEN, CircuitState.HALF_OPEN)

            start = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except self.config.excluded_exceptions:
                if is_probe:
                    # The probe proved nothing; fall back to OPEN uncounted.
                    await self._storage.force_open(self.name)
                    await self._emit_state_change(
                        CircuitState.HALF_OPEN, CircuitState.OPEN
                    )
                raise
            except self.config.expected_exceptions as exc:
                elapsed = max(time.monotonic() - start, 0.0)
                await self._emit_call_failed(exc, elapsed)

                if is_probe:
                    await self._storage.record_failure(self.name)
                    await self._storage.force_open(self.name)
                    await self._emit_state_change(
                        CircuitState.HALF_OPEN, CircuitState.OPEN
                    )
                else:
                    failure_snapshot = await self._storage.record_failure(self.name)
                    if (
                        failure_snapshot.state == CircuitState.CLOSED
                        and failure_snapshot.failure_count
                        >= self.config.failure_threshold
                    ):
                        await self._storage.force_open(self.name)
                        await self._emit_state_change(
                            CircuitState.CLOSED, CircuitState.OPEN
                        )
                raise

            elapsed = max(time.monotonic() - start, 0.0)
            if is_probe:
                await self._storage.reset(self.name)
                await self._emit_state_change(
                    CircuitState.HALF_OPEN, CircuitState.CLOSED
                )
            else:
                await self._storage.record_success(self.name)

            await self._emit_call_succeeded(elapsed)
            return result
        finally:
            if is_probe:
                self._probe_gate.release()
