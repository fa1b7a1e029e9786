"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the telescope watcher.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., REDIS_URL).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Redis (subscription ledger)
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")

    # Telegram Bot API
    telegram_bot_token: str | None = None
    telegram_api_base: str = "https://api.telegram.org"

    # Twitter web session (Spaces)
    twitter_auth_token: str | None = None
    twitter_csrf_token: str | None = None
    twitter_batch_size: int = Field(default=100, ge=1, le=100)

    # Bilibili Live (public API, no credentials)
    bilibili_enabled: bool = True

    # Polling
    poll_interval_seconds: int = Field(default=30, ge=1)

    # HTTP
    http_timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_http_retries: int = Field(default=0, ge=0, le=10)
    max_backoff_seconds: float = Field(default=60.0, ge=1.0, le=300.0)

    # Notification delivery
    notify_circuit_breaker_threshold: int = Field(default=5, ge=1)
    notify_circuit_breaker_recovery_seconds: float = Field(default=60.0, ge=5.0)

    # Observability
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def twitter_configured(self) -> bool:
        """Check if the Twitter web session is configured."""
        return (
            self.twitter_auth_token is not None
            and self.twitter_csrf_token is not None
        )

    @property
    def telegram_configured(self) -> bool:
        """Check if the Telegram bot token is configured."""
        return self.telegram_bot_token is not None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
