from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx

from superapp_core.backend.helpers import parse_json_body, raise_for_backend_status
from superapp_core.backend.url import derive_function_url
from superapp_core.errors import NetworkFailure
from superapp_core.headers import build_backend_headers
from superapp_core.logging import log_info

_logger = logging.getLogger(__name__)


class FunctionsClient:
    """Invoke the backend's serverless functions over authenticated HTTPS."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        backend_url: str,
        api_key: str,
        timeout_seconds: float | None = None,
    ) -> None:
        """Create a functions client.

        Args:
            client: Shared async HTTP client.
            backend_url: Base URL of the hosted backend project.
            api_key: Public project API key sent with every request.
            timeout_seconds: Per-request timeout; the client default when None.
        """
        self._client = client
        self._backend_url = backend_url
        self._api_key = api_key
        self._timeout = timeout_seconds

    async def invoke(
        self,
        name: str,
        payload: Mapping[str, object] | None = None,
        *,
        access_token: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> object:
        """POST ``payload`` as JSON to function ``name`` and return the body.

        Raises:
            AuthorizationError: The backend rejected the credential.
            NetworkFailure: Transport error or retryable status.
            BackendRequestError: Any other non-2xx response or invalid body.
        """
        url = derive_function_url(self._backend_url, name)
        request_headers = build_backend_headers(
            api_key=self._api_key,
            access_token=access_token,
            extra_headers=headers,
        )
        request_kwargs: dict[str, object] = {}
        if self._timeout is not None:
            request_kwargs["timeout"] = self._timeout
        try:
            response = await self._client.post(
                url,
                json=dict(payload or {}),
                headers=request_headers,
                **request_kwargs,  # type: ignore[arg-type]
            )
        except httpx.RequestError as exc:
            raise NetworkFailure(f"function {name}: {exc}") from exc

        raise_for_backend_status(response, context=f"function {name}")
        log_info(
            _logger,
            "backend.function_invoked",
            function=name,
            http_status=response.status_code,
        )
        return parse_json_body(response, context=f"function {name}")
