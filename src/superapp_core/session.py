"""Session guardian: keeps the bearer credential fresh for backend calls.

Every outbound call goes through ``SessionGuardian.invoke_with_session``,
which obtains a session that is not about to expire, runs the call through
the shared circuit breaker, and on an authorization failure refreshes the
session and retries. The retry count is an explicit ``RetryBackoffPolicy``
(one extra attempt by default), so a revoked credential can never cause a
refresh loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, replace
from typing import Protocol

from tenacity import retry_if_exception_type

from superapp_core.circuit_breaker import CircuitBreaker
from superapp_core.errors import (
    AuthorizationError,
    BackendRequestError,
    SessionExpiredError,
)
from superapp_core.logging import (
    bind_log_context,
    clear_log_context,
    log_exception,
    log_info,
    log_warning,
)
from superapp_core.retry import RetryBackoffPolicy, build_exponential_jitter_retrying
from superapp_core.storage import AbstractKeyValueStorage

SESSION_STORAGE_KEY = "auth.session"
DEFAULT_REFRESH_THRESHOLD_SECONDS = 300.0
REASON_NO_SESSION = "no_session"
REASON_REFRESH_REJECTED = "refresh_rejected"
REASON_REFRESH_FAILED = "refresh_failed"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionToken:
    """Authenticated session with an absolute expiry in epoch seconds."""

    access_token: str
    refresh_token: str
    expires_at: float
    user_id: str | None = None

    def seconds_remaining(self, now: float) -> float:
        return self.expires_at - now

    def is_near_expiry(self, threshold_seconds: float, now: float) -> bool:
        """Return true when less than ``threshold_seconds`` of lifetime remain."""
        return self.seconds_remaining(now) < threshold_seconds

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SessionToken:
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token")
        expires_at = data.get("expires_at")
        user_id = data.get("user_id")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")
        if not isinstance(refresh_token, str):
            raise ValueError("refresh_token must be a string")
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
            raise ValueError("expires_at must be a number")
        if user_id is not None and not isinstance(user_id, str):
            raise ValueError("user_id must be a string")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=float(expires_at),
            user_id=user_id,
        )


class TokenRefresher(Protocol):
    """Auth service surface used by the guardian."""

    async def refresh(self, refresh_token: str) -> SessionToken:
        """Exchange a refresh token for a new session."""

    async def sign_out(self, access_token: str) -> None:
        """Revoke a session server-side."""


class FunctionInvoker(Protocol):
    """Backend function-invocation surface used by the guardian."""

    async def invoke(
        self,
        name: str,
        payload: Mapping[str, object] | None = None,
        *,
        access_token: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> object:
        """Invoke one backend function."""


class SessionListener(Protocol):
    """Hooks for the user-visible consequences of session changes."""

    async def on_session_expired(self, reason: str) -> None:
        """Prompt the user to authenticate again."""

    async def on_signed_out(self, user_id: str | None) -> None:
        """Clear local state owned by ``user_id``."""


class SessionGuardian:
    """Hand out valid sessions and run backend calls with them."""

    def __init__(
        self,
        *,
        auth: TokenRefresher,
        functions: FunctionInvoker,
        breaker: CircuitBreaker,
        storage: AbstractKeyValueStorage | None = None,
        refresh_threshold_seconds: float = DEFAULT_REFRESH_THRESHOLD_SECONDS,
        auth_retries: int = 1,
        listeners: Sequence[SessionListener] | None = None,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Create a guardian.

        Args:
            auth: Token refresh and sign-out client.
            functions: Backend function client.
            breaker: Breaker shared by every backend call of this client.
            storage: Optional storage used to persist the session.
            refresh_threshold_seconds: Remaining lifetime below which the
                session is refreshed before use.
            auth_retries: Extra attempts after an authorization failure.
            listeners: Session expiry and sign-out hooks.
            now_fn: Clock returning epoch seconds.
        """
        if refresh_threshold_seconds < 0:
            raise ValueError("refresh_threshold_seconds must be >= 0")
        self._auth = auth
        self._functions = functions
        self._breaker = breaker
        self._storage = storage
        self._threshold = refresh_threshold_seconds
        self._retry_policy = RetryBackoffPolicy.immediate(retries=auth_retries)
        self._listeners: list[SessionListener] = list(listeners or ())
        self._now = now_fn
        self._refresh_lock = asyncio.Lock()
        self._session: SessionToken | None = None

    @property
    def session(self) -> SessionToken | None:
        """Return the current session without validating it."""
        return self._session

    @property
    def retry_policy(self) -> RetryBackoffPolicy:
        return self._retry_policy

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener`` and return a function that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def restore(self) -> SessionToken | None:
        """Load a previously persisted session, discarding unreadable ones."""
        if self._storage is None:
            return self._session
        data = await self._storage.get(SESSION_STORAGE_KEY)
        if data is None:
            return self._session
        try:
            if not isinstance(data, Mapping):
                raise ValueError("persisted session is not an object")
            session = SessionToken.from_dict(data)
        except ValueError as exc:
            log_warning(_logger, "session.restore_discarded", error=str(exc))
            await self._storage.delete(SESSION_STORAGE_KEY)
            return None
        self._set_session(session)
        return session

    async def sign_in(self, session: SessionToken) -> None:
        """Adopt a freshly authenticated session."""
        await self._store(session)
        log_info(_logger, "session.signed_in", user_id=session.user_id)

    async def sign_out(self) -> None:
        """Destroy the session and tell listeners to clear local state."""
        session = self._session
        await self._drop_session()
        if session is not None:
            await self._auth.sign_out(session.access_token)
        user_id = None if session is None else session.user_id
        for listener in tuple(self._listeners):
            try:
                await listener.on_signed_out(user_id)
            except Exception:
                log_exception(
                    _logger,
                    "session.listener_failed",
                    hook="on_signed_out",
                    listener=listener.__class__.__name__,
                )
        log_info(_logger, "session.signed_out", user_id=user_id)
        clear_log_context("user_id")

    async def get_valid_session(self) -> SessionToken | None:
        """Return a session that is not near expiry, or ``None``.

        ``None`` means re-authentication is required; the session-expired
        listeners have already been notified.
        """
        session = self._session
        if session is None:
            await self._handle_expired(REASON_NO_SESSION)
            return None
        if not session.is_near_expiry(self._threshold, self._now()):
            return session

        async with self._refresh_lock:
            current = self._session
            if current is None:
                await self._handle_expired(REASON_NO_SESSION)
                return None
            if not current.is_near_expiry(self._threshold, self._now()):
                return current
            return await self._refresh_locked(current)

    async def force_refresh(
        self,
        *,
        stale_access_token: str | None = None,
    ) -> SessionToken | None:
        """Refresh regardless of expiry.

        When ``stale_access_token`` is given and the current session already
        carries a different token, another caller refreshed in the meantime
        and the current session is returned as is.
        """
        async with self._refresh_lock:
            current = self._session
            if current is None:
                await self._handle_expired(REASON_NO_SESSION)
                return None
            if (
                stale_access_token is not None
                and current.access_token != stale_access_token
            ):
                return current
            return await self._refresh_locked(current)

    async def invoke_with_session(
        self,
        operation: str,
        payload: Mapping[str, object] | None = None,
    ) -> object:
        """Run backend function ``operation`` with a valid session.

        Raises:
            SessionExpiredError: No valid session, even after a refresh.
            AuthorizationError: The retried call was rejected again.
            CircuitOpenError: The breaker rejected the call.
            BackendRequestError: Any other backend failure.
        """
        retrying = build_exponential_jitter_retrying(
            retry=retry_if_exception_type(AuthorizationError),
            policy=self._retry_policy,
        )
        session: SessionToken | None = None
        async for attempt in retrying:
            with attempt:
                if session is None:
                    session = await self.get_valid_session()
                else:
                    log_info(
                        _logger,
                        "session.retrying_after_refresh",
                        operation=operation,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    session = await self.force_refresh(
                        stale_access_token=session.access_token
                    )
                if session is None:
                    raise SessionExpiredError(
                        f"No valid session available for {operation}."
                    )
                return await self._breaker.execute(
                    self._functions.invoke,
                    operation,
                    payload,
                    access_token=session.access_token,
                )

        raise RuntimeError("Session retry loop exited unexpectedly.")

    async def _refresh_locked(self, current: SessionToken) -> SessionToken | None:
        try:
            refreshed = await self._auth.refresh(current.refresh_token)
        except AuthorizationError as exc:
            log_warning(
                _logger,
                "session.refresh_rejected",
                user_id=current.user_id,
                error=str(exc),
            )
            await self._drop_session()
            await self._handle_expired(REASON_REFRESH_REJECTED)
            return None
        except BackendRequestError as exc:
            log_warning(
                _logger,
                "session.refresh_failed",
                user_id=current.user_id,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            await self._handle_expired(REASON_REFRESH_FAILED)
            return None

        if refreshed.user_id is None:
            refreshed = replace(refreshed, user_id=current.user_id)
        await self._store(refreshed)
        return refreshed

    def _set_session(self, session: SessionToken) -> None:
        self._session = session
        if session.user_id is not None:
            bind_log_context(user_id=session.user_id)

    async def _store(self, session: SessionToken) -> None:
        self._set_session(session)
        if self._storage is not None:
            await self._storage.set(SESSION_STORAGE_KEY, session.to_dict())

    async def _drop_session(self) -> None:
        self._session = None
        if self._storage is not None:
            await self._storage.delete(SESSION_STORAGE_KEY)

    async def _handle_expired(self, reason: str) -> None:
        log_warning(_logger, "session.expired", reason=reason)
        for listener in tuple(self._listeners):
            try:
                await listener.on_session_expired(reason)
            except Exception:
                log_exception(
                    _logger,
                    "session.listener_failed",
                    hook="on_session_expired",
                    listener=listener.__class__.__name__,
                )
