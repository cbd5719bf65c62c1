"""Client Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - Every knob has a default matching the documented retry/cleanup/undo policy
    - get_settings() is cached (lru_cache) — single instance per process
    - Delays are milliseconds everywhere; only asyncio.sleep sees seconds

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - OPTIMISTIC_ env prefix: the host UI application owns the unprefixed namespace
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="OPTIMISTIC_", case_sensitive=False,
    )

    # HTTP
    api_base_url: str = "http://localhost:8000/api"
    request_timeout_seconds: float = 30.0

    @field_validator("api_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Paths are joined as base_url + "/teams"; avoid a double slash."""
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    # Retry
    rate_limit_max_retries: int = 3
    rate_limit_default_delay_ms: int = 1000
    service_unavailable_max_retries: int = 2
    service_unavailable_delay_ms: int = 5000

    # Generic backoff (with_retry)
    backoff_max_retries: int = 3
    backoff_initial_delay_ms: int = 1000
    backoff_max_delay_ms: int = 10_000
    backoff_multiplier: float = 2.0

    # Pending action bookkeeping
    pending_success_cleanup_ms: int = 1000
    pending_failure_cleanup_ms: int = 2000

    # Undo
    undo_max_history: int = 10
    undo_timeout_ms: int | None = None

    # Error log
    error_log_size: int = 50

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
