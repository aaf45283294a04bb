from __future__ import annotations

import json

import httpx
import pytest
from pytest_httpx import HTTPXMock

from superapp_core.backend import FunctionsClient, derive_function_url
from superapp_core.backend.helpers import summarize_backend_error
from superapp_core.errors import (
    AuthorizationError,
    BackendRequestError,
    NetworkFailure,
    TransientError,
)

pytestmark = pytest.mark.asyncio

_BACKEND_URL = "https://project.example.co"
_ORDERS_URL = f"{_BACKEND_URL}/functions/v1/orders"


def _build_client(http_client: httpx.AsyncClient) -> FunctionsClient:
    return FunctionsClient(
        client=http_client,
        backend_url=_BACKEND_URL,
        api_key="anon-key",
        timeout_seconds=5.0,
    )


async def test_invoke_posts_json_with_bearer_token(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(method="POST", url=_ORDERS_URL, json={"id": 42})

    async with httpx.AsyncClient() as http_client:
        client = _build_client(http_client)
        result = await client.invoke(
            "orders",
            {"item": "coffee"},
            access_token="user-token",
            headers={"X-Request-Id": "abc", "Authorization": "spoofed"},
        )

    assert result == {"id": 42}
    request = httpx_mock.get_request()
    assert request is not None
    assert json.loads(request.content) == {"item": "coffee"}
    assert request.headers["Authorization"] == "Bearer user-token"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["X-Request-Id"] == "abc"


async def test_invoke_without_token_uses_api_key(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(method="POST", url=_ORDERS_URL, json=[])

    async with httpx.AsyncClient() as http_client:
        assert await _build_client(http_client).invoke("orders") == []

    request = httpx_mock.get_request()
    assert request is not None
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert json.loads(request.content) == {}


async def test_invoke_empty_body_returns_none(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(method="POST", url=_ORDERS_URL, status_code=204)

    async with httpx.AsyncClient() as http_client:
        assert await _build_client(http_client).invoke("orders") is None


@pytest.mark.parametrize("status_code", [401, 403])
async def test_invoke_maps_auth_statuses(
    httpx_mock: HTTPXMock,
    status_code: int,
) -> None:
    httpx_mock.add_response(
        method="POST",
        url=_ORDERS_URL,
        status_code=status_code,
        json={"message": "JWT expired"},
    )

    async with httpx.AsyncClient() as http_client:
        with pytest.raises(AuthorizationError) as exc_info:
            await _build_client(http_client).invoke("orders")

    assert exc_info.value.http_status == status_code
    assert "JWT expired" in str(exc_info.value)


@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_invoke_maps_retryable_statuses_to_network_failure(
    httpx_mock: HTTPXMock,
    status_code: int,
) -> None:
    httpx_mock.add_response(
        method="POST",
        url=_ORDERS_URL,
        status_code=status_code,
        text="unavailable",
    )

    async with httpx.AsyncClient() as http_client:
        with pytest.raises(NetworkFailure) as exc_info:
            await _build_client(http_client).invoke("orders")

    assert isinstance(exc_info.value, TransientError)
    assert exc_info.value.response_body == "unavailable"


async def test_invoke_maps_other_client_errors(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(
        method="POST",
        url=_ORDERS_URL,
        status_code=422,
        json={"error": "bad payload", "code": "E42"},
    )

    async with httpx.AsyncClient() as http_client:
        with pytest.raises(BackendRequestError) as exc_info:
            await _build_client(http_client).invoke("orders")

    assert not isinstance(exc_info.value, (AuthorizationError, NetworkFailure))
    assert "bad payload (code=E42)" in str(exc_info.value)


async def test_invoke_maps_transport_errors(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_exception(httpx.ConnectError("offline"), url=_ORDERS_URL)

    async with httpx.AsyncClient() as http_client:
        with pytest.raises(NetworkFailure, match="offline"):
            await _build_client(http_client).invoke("orders")


async def test_invoke_rejects_invalid_json(httpx_mock: HTTPXMock) -> None:
    httpx_mock.add_response(method="POST", url=_ORDERS_URL, text="<html>")

    async with httpx.AsyncClient() as http_client:
        with pytest.raises(BackendRequestError, match="not valid JSON"):
            await _build_client(http_client).invoke("orders")


async def test_function_url_rejects_path_injection() -> None:
    with pytest.raises(ValueError):
        derive_function_url(_BACKEND_URL, "../auth")
    assert derive_function_url(f"{_BACKEND_URL}/", "menu-items") == (
        f"{_BACKEND_URL}/functions/v1/menu-items"
    )


async def test_summarize_backend_error_falls_back_to_json_dump() -> None:
    assert summarize_backend_error({"unexpected": 1}) == '{"unexpected": 1}'
    assert summarize_backend_error({"msg": "nope"}) == "nope"
