"""Shared error types for superapp_core."""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class BackendRequestError(RuntimeError):
    """Base exception for backend request failures."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        """Initialize request-error metadata.

        Args:
            message: Human-readable error message.
            http_status: Optional HTTP status observed from the backend.
            response_body: Optional response payload text.
        """
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class NetworkFailure(BackendRequestError, TransientError):
    """Raised for transport errors and retryable backend statuses."""


class AuthorizationError(BackendRequestError):
    """Raised when the backend rejects the bearer credential (401/403)."""


class SessionExpiredError(RuntimeError):
    """Raised when no valid session is available, even after a refresh."""
