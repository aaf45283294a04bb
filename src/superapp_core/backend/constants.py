"""Shared constants used by the superapp_core backend clients."""

RETRY_STATUSES = {408, 425, 429, 500, 502, 503, 504}
AUTH_STATUSES = {401, 403}
REFRESH_REJECTED_STATUSES = {400, 401, 403}
FUNCTIONS_PATH = "/functions/v1"
AUTH_TOKEN_PATH = "/auth/v1/token"
AUTH_LOGOUT_PATH = "/auth/v1/logout"
AUTH_HEALTH_PATH = "/auth/v1/health"
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
