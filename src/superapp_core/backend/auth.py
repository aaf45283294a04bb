from __future__ import annotations

import logging
import time
from collections.abc import Callable

import httpx

from superapp_core.backend.constants import (
    AUTH_LOGOUT_PATH,
    AUTH_TOKEN_PATH,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    REFRESH_REJECTED_STATUSES,
)
from superapp_core.backend.helpers import parse_json_object, raise_for_backend_status
from superapp_core.backend.url import derive_auth_url
from superapp_core.errors import (
    AuthorizationError,
    BackendRequestError,
    NetworkFailure,
)
from superapp_core.headers import build_backend_headers
from superapp_core.logging import log_info, log_warning
from superapp_core.session import SessionToken

_logger = logging.getLogger(__name__)


class AuthClient:
    """Token refresh and sign-out against the backend auth service."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        backend_url: str,
        api_key: str,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._token_url = derive_auth_url(backend_url, AUTH_TOKEN_PATH)
        self._logout_url = derive_auth_url(backend_url, AUTH_LOGOUT_PATH)
        self._api_key = api_key
        self._now = now_fn

    async def refresh(self, refresh_token: str) -> SessionToken:
        """Exchange a refresh token for a new session.

        Raises:
            AuthorizationError: The refresh token was rejected.
            NetworkFailure: The auth service could not be reached.
            BackendRequestError: The response was malformed.
        """
        if not refresh_token:
            raise AuthorizationError("No refresh token available.")
        try:
            response = await self._client.post(
                self._token_url,
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
                headers=build_backend_headers(api_key=self._api_key),
            )
        except httpx.RequestError as exc:
            raise NetworkFailure(f"token refresh: {exc}") from exc

        raise_for_backend_status(
            response,
            context="token refresh",
            auth_statuses=REFRESH_REJECTED_STATUSES,
        )
        payload = parse_json_object(response, context="token refresh")
        session = self._parse_session(payload, fallback_refresh_token=refresh_token)
        log_info(
            _logger,
            "auth.session_refreshed",
            user_id=session.user_id,
            expires_at=session.expires_at,
        )
        return session

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session server-side.

        Local sign-out must not depend on this call, so failures are logged
        and the caller carries on clearing local state.
        """
        try:
            response = await self._client.post(
                self._logout_url,
                headers=build_backend_headers(
                    api_key=self._api_key, access_token=access_token
                ),
            )
            raise_for_backend_status(response, context="sign out")
        except httpx.RequestError as exc:
            log_warning(_logger, "auth.remote_sign_out_failed", error=str(exc))
        except BackendRequestError as exc:
            log_warning(
                _logger,
                "auth.remote_sign_out_failed",
                error=str(exc),
                http_status=exc.http_status,
            )

    def _parse_session(
        self,
        payload: dict[str, object],
        *,
        fallback_refresh_token: str,
    ) -> SessionToken:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise BackendRequestError("Token response missing access_token field.")

        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            refresh_token = fallback_refresh_token

        user_id: str | None = None
        user = payload.get("user")
        if isinstance(user, dict) and isinstance(user.get("id"), str):
            user_id = user["id"]

        return SessionToken(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._extract_expiry(payload),
            user_id=user_id,
        )

    def _extract_expiry(self, payload: dict[str, object]) -> float:
        expires_at = payload.get("expires_at")
        if isinstance(expires_at, (int, float)) and not isinstance(expires_at, bool):
            return float(expires_at)
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            return self._now() + float(expires_in)
        return self._now() + DEFAULT_TOKEN_LIFETIME_SECONDS
