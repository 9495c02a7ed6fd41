"""
Centralized settings for relay.

Manifesto:
    The limiter, breaker and retry parameters are supplied once at
    construction, not per call. ``RelaySettings`` reads them from ``RELAY_*``
    environment variables or a ``.env`` file, validates them at startup and
    builds the frozen config objects the execution layer consumes.

Examples:
    >>> import os
    >>> os.environ["RELAY_RATE_LIMIT_MAX_CALLS"] = "50"
    >>> settings = get_settings(_force_reload=True)
    >>> settings.build_rate_limiter_config().max_calls
    50

Tags:
    relay, configuration, settings, pydantic, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay.execution.circuit_breaker import CircuitBreakerConfig
from relay.execution.rate_limit import RateLimiterConfig
from relay.execution.retry import RetryPolicy


class RelaySettings(BaseSettings):
    """Relay configuration.

    All fields can be set via ``RELAY_*`` environment variables (e.g.
    ``RELAY_CIRCUIT_FAILURE_THRESHOLD=3``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Rate limiter ─────────────────────────────────────────────
    rate_limit_max_calls: int = Field(default=10, ge=1)
    rate_limit_window_seconds: float = Field(default=1.0, gt=0)

    # ── Circuit breaker ──────────────────────────────────────────
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_cool_down_seconds: float = Field(default=30.0, ge=0)

    # ── Retry policy ─────────────────────────────────────────────
    retry_max_retries: int = Field(default=3, ge=1)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_jitter_fraction: float = Field(default=0.25, ge=0, le=1)

    # ── Deadlines ────────────────────────────────────────────────
    default_timeout: float | None = Field(
        default=None, gt=0, description="Per-call deadline in seconds; unset means none"
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", pattern="^(json|console)$")

    @model_validator(mode="after")
    def _validate_delays(self) -> RelaySettings:
        if self.retry_max_delay < self.retry_initial_delay:
            raise ValueError("retry_max_delay must be >= retry_initial_delay")
        return self

    def build_rate_limiter_config(self) -> RateLimiterConfig:
        return RateLimiterConfig(
            max_calls=self.rate_limit_max_calls,
            window_seconds=self.rate_limit_window_seconds,
        )

    def build_circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            cool_down_seconds=self.circuit_cool_down_seconds,
        )

    def build_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_retries,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
            jitter_fraction=self.retry_jitter_fraction,
        )


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, RelaySettings] = {}


def get_settings(*, env_file: str | None = None, _force_reload: bool = False) -> RelaySettings:
    """Load, validate, and cache a :class:`RelaySettings` instance.

    Parameters
    ----------
    env_file:
        Override the ``.env`` file to read.
    _force_reload:
        Bypass cache and reload from the environment.
    """
    cache_key = env_file or ""
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file is not None:
        settings = RelaySettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = RelaySettings()

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
