"""Typed settings configuration - single source of truth."""

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Backend endpoints
    api_base_url: str = "http://localhost:8080/api/v2"
    legacy_api_base_url: str = "http://localhost:8080/api/v1"

    # Auth
    auth_token: SecretStr | None = None

    # Timeouts (milliseconds)
    request_timeout_ms: int = 30000

    # Selection sync
    selection_debounce_ms: int = 300
    session_extend_days: int = 30

    # Legacy client retries
    legacy_retry_attempts: int = 2
    legacy_retry_delay_ms: int = 1000

    # Token persistence
    token_store: Literal["memory", "file", "redis"] = "memory"
    token_store_path: str = ".cpq/session.json"
    token_store_prefix: str = "cpq_"
    redis_url: str | None = None

    # Logging
    log_level: str = "INFO"

    # Stub backend
    devserver_session_ttl_days: int = 30
    devserver_catalog_path: str | None = None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
