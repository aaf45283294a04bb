"""Helpers for parsing and classifying backend responses."""

from __future__ import annotations

import json
from collections.abc import Collection
from typing import cast

import httpx

from superapp_core.backend.constants import AUTH_STATUSES, RETRY_STATUSES
from superapp_core.errors import (
    AuthorizationError,
    BackendRequestError,
    NetworkFailure,
)

_MESSAGE_KEYS = ("error_description", "message", "msg", "error")


def summarize_backend_error(error: object) -> str:
    """Create a concise error summary from a backend error payload."""
    if isinstance(error, dict):
        for key in _MESSAGE_KEYS:
            message = error.get(key)
            if isinstance(message, str) and message:
                code = error.get("code") or error.get("error_code")
                if code is not None:
                    return f"{message} (code={code})"
                return message
    if isinstance(error, str) and error:
        return error
    return json.dumps(error)


def _response_summary(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    return summarize_backend_error(payload)


def raise_for_backend_status(
    response: httpx.Response,
    *,
    context: str,
    auth_statuses: Collection[int] = AUTH_STATUSES,
) -> None:
    """Map a non-2xx response onto the backend error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    message = f"{context} failed (HTTP {status}): {_response_summary(response)}"
    if status in auth_statuses:
        raise AuthorizationError(
            message, http_status=status, response_body=response.text
        )
    if status in RETRY_STATUSES:
        raise NetworkFailure(message, http_status=status, response_body=response.text)
    raise BackendRequestError(
        message, http_status=status, response_body=response.text
    )


def parse_json_body(response: httpx.Response, *, context: str) -> object:
    """Decode a JSON body; empty bodies decode to ``None``."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise BackendRequestError(
            f"{context} response is not valid JSON.",
            http_status=response.status_code,
            response_body=response.text,
        ) from exc


def parse_json_object(response: httpx.Response, *, context: str) -> dict[str, object]:
    """Decode a JSON body that must be an object."""
    payload = parse_json_body(response, context=context)
    if not isinstance(payload, dict):
        raise BackendRequestError(
            f"{context} response is not a JSON object.",
            http_status=response.status_code,
            response_body=response.text,
        )
    return cast(dict[str, object], payload)
