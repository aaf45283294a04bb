from __future__ import annotations

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from superapp_core.circuit_breaker import CircuitBreakerConfig
from superapp_core.errors import AuthorizationError

SETTINGS_ENV_PREFIX = "SUPERAPP_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class CoreSettings(BaseSettings):
    """Settings for the backend resilience and offline sync layer."""

    model_config = prefixed_settings_config(SETTINGS_ENV_PREFIX)

    backend_url: str
    backend_api_key: str
    request_timeout_seconds: float = 15.0
    breaker_failure_threshold: int = 5
    breaker_cooldown_seconds: float = 30.0
    breaker_reset_hint_seconds: float = 60.0
    session_refresh_threshold_seconds: float = 300.0
    session_auth_retries: int = 1
    offline_queue_ttl_seconds: float = 24 * 60 * 60
    cart_ttl_seconds: float = 24 * 60 * 60
    cache_ttl_seconds: float = 300.0
    storage_path: str | None = None
    connectivity_poll_seconds: float = 10.0
    log_level: str = "INFO"

    @field_validator("backend_url", "backend_api_key", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        return normalized

    @field_validator("backend_url")
    @classmethod
    def _normalize_backend_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("backend_url must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("storage_path", mode="before")
    @classmethod
    def _blank_storage_path_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _validate_core_settings(self) -> CoreSettings:
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_cooldown_seconds < 0:
            raise ValueError("breaker_cooldown_seconds must be >= 0")
        if self.breaker_reset_hint_seconds < 0:
            raise ValueError("breaker_reset_hint_seconds must be >= 0")
        if self.session_refresh_threshold_seconds < 0:
            raise ValueError("session_refresh_threshold_seconds must be >= 0")
        if self.session_auth_retries < 0:
            raise ValueError("session_auth_retries must be >= 0")
        for field_name in (
            "offline_queue_ttl_seconds",
            "cart_ttl_seconds",
            "cache_ttl_seconds",
            "connectivity_poll_seconds",
        ):
            if getattr(self, field_name) <= 0:
                raise ValueError(f"{field_name} must be > 0")
        return self

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build the circuit breaker configuration for backend calls.

        Authorization failures are left to the session guardian and do not
        count against backend health.
        """
        return CircuitBreakerConfig(
            failure_threshold=self.breaker_failure_threshold,
            recovery_timeout=self.breaker_cooldown_seconds,
            excluded_exceptions=(AuthorizationError,),
        )
