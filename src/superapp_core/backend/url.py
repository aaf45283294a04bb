"""URL helpers for the hosted backend's function and auth endpoints."""

import re
from urllib.parse import urlsplit

from superapp_core.backend.constants import FUNCTIONS_PATH

_FUNCTION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def normalize_backend_url(backend_url: str) -> str:
    """Return ``scheme://host[/prefix]`` without a trailing slash."""
    parsed = urlsplit(backend_url.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"backend URL must be absolute http(s): {backend_url!r}")
    prefix = parsed.path.rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc}{prefix}"


def derive_function_url(backend_url: str, name: str) -> str:
    """Derive the invocation URL of one serverless function."""
    if not _FUNCTION_NAME.match(name):
        raise ValueError(f"invalid function name: {name!r}")
    return f"{normalize_backend_url(backend_url)}{FUNCTIONS_PATH}/{name}"


def derive_auth_url(backend_url: str, path: str) -> str:
    """Derive an auth endpoint URL from the backend base URL."""
    return f"{normalize_backend_url(backend_url)}/{path.lstrip('/')}"
