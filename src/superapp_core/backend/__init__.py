"""HTTP clients for the hosted backend's function and auth surfaces."""

from superapp_core.backend.auth import AuthClient
from superapp_core.backend.functions import FunctionsClient
from superapp_core.backend.url import (
    derive_auth_url,
    derive_function_url,
    normalize_backend_url,
)

__all__ = [
    "AuthClient",
    "FunctionsClient",
    "derive_auth_url",
    "derive_function_url",
    "normalize_backend_url",
]
