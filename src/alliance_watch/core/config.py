"""
Configuration management for the alliance membership watcher.

Uses Pydantic settings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables or a local .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .. import __version__
from .retry import RetryPolicy


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Variable names are the upper-cased field names, e.g. ALLIANCE_ID,
    DISCORD_TOKEN, NOTIFY_CHANNEL_ID, POLL_INTERVAL_SECONDS.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # Monitoring Target
    # ==========================================================================
    alliance_id: int = Field(gt=0, description="ESI alliance id to monitor")
    poll_interval_seconds: float = Field(default=300.0, ge=1.0)
    state_path: Path = Field(default=Path("state/roster.json"))

    # ==========================================================================
    # Discord
    # ==========================================================================
    discord_token: Optional[str] = Field(default=None, description="Discord bot token")
    notify_channel_id: Optional[int] = Field(default=None, description="Channel receiving notifications")
    discord_api_url: str = "https://discord.com/api/v10"
    min_member_count: int = Field(
        default=0,
        ge=0,
        description="Corporations with fewer members are not announced (0 disables)",
    )
    notify_concurrency: int = Field(default=1, ge=1, le=10)

    # ==========================================================================
    # ESI
    # ==========================================================================
    esi_base_url: str = "https://esi.evetech.net/latest"
    esi_user_agent: str = f"alliance-watch/{__version__}"
    esi_requests_per_minute: int = Field(default=300, ge=1)
    info_cache_ttl: int = Field(default=3600, ge=0, description="TTL for alliance/corporation lookups (seconds)")

    # ==========================================================================
    # Timeouts & Retries
    # ==========================================================================
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    persist_timeout_seconds: float = Field(default=10.0, gt=0)
    notify_timeout_seconds: float = Field(default=30.0, gt=0)
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=2.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=60.0, ge=0)
    persist_max_attempts: int = Field(default=3, ge=1)

    # ==========================================================================
    # Logging
    # ==========================================================================
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_delays(self) -> "Settings":
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    @computed_field
    @property
    def discord_configured(self) -> bool:
        """Whether Discord delivery can be used."""
        return bool(self.discord_token) and self.notify_channel_id is not None

    def retry_policy(self, max_attempts: Optional[int] = None) -> RetryPolicy:
        """Build the shared backoff policy, optionally with another attempt budget."""
        return RetryPolicy(
            max_attempts=max_attempts or self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
            max_delay=self.retry_max_delay,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
