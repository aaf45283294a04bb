from __future__ import annotations

from collections.abc import Mapping

MAX_HEADER_VALUE_LENGTH = 1024
RESERVED_REQUEST_HEADERS = frozenset(
    {
        "authorization",
        "apikey",
        "content-type",
    }
)


def _truncate(value: str, *, limit: int = MAX_HEADER_VALUE_LENGTH) -> str:
    """Truncate a decoded string value to the configured header size limit."""
    return value[:limit]


def build_backend_headers(
    *,
    api_key: str,
    access_token: str | None = None,
    extra_headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return request headers for one backend call.

    Without an access token the project API key doubles as the bearer
    credential, which is how anonymous calls are authorized. Extra headers
    can never override the reserved auth and content headers.
    """
    headers: dict[str, str] = {}
    if extra_headers:
        for key, value in extra_headers.items():
            if key.lower() in RESERVED_REQUEST_HEADERS:
                continue
            headers[key] = _truncate(value)

    bearer = access_token if access_token else api_key
    headers["apikey"] = api_key
    headers["Authorization"] = f"Bearer {bearer}"
    headers["Content-Type"] = "application/json"
    return headers
