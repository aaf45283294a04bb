from __future__ import annotations

from superapp_core.headers import (
    MAX_HEADER_VALUE_LENGTH,
    _truncate,
    build_backend_headers,
)


def test_truncate_applies_default_limit() -> None:
    value = "x" * (MAX_HEADER_VALUE_LENGTH + 10)
    assert _truncate(value) == "x" * MAX_HEADER_VALUE_LENGTH


def test_backend_headers_use_access_token_as_bearer() -> None:
    headers = build_backend_headers(api_key="anon-key", access_token="user-token")

    assert headers == {
        "apikey": "anon-key",
        "Authorization": "Bearer user-token",
        "Content-Type": "application/json",
    }


def test_backend_headers_fall_back_to_api_key() -> None:
    headers = build_backend_headers(api_key="anon-key")

    assert headers["Authorization"] == "Bearer anon-key"


def test_backend_headers_skip_reserved_extras_and_truncate() -> None:
    long_value = "z" * (MAX_HEADER_VALUE_LENGTH + 5)

    headers = build_backend_headers(
        api_key="anon-key",
        extra_headers={
            "x-client-info": long_value,
            "authorization": "Bearer spoofed",
            "APIKEY": "other",
        },
    )

    assert headers["x-client-info"] == "z" * MAX_HEADER_VALUE_LENGTH
    assert "authorization" not in headers
    assert "APIKEY" not in headers
    assert headers["apikey"] == "anon-key"
