"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.app.core.config import settings
    print(settings.DEFAULT_SUPPRESSION_MINUTES)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Regulated Notifications"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Time shifts (local time of each contact) ──
    BUSINESS_HOURS_START: int = 7   # inclusive hour
    BUSINESS_HOURS_END: int = 17    # exclusive hour
    WEEKEND_DAYS: List[int] = [5, 6]  # Monday=0 … Sunday=6

    # ── Regulation defaults ──
    DEFAULT_SUPPRESSION_MINUTES: int = 8 * 60
    DEFAULT_DIGEST_HEAD: int = 5
    DEFAULT_DIGEST_TAIL: int = 5
    MAX_EMAIL_DIGEST_ITEMS: int = 50

    # ── Concurrency ──
    DISPATCH_CONCURRENCY: int = 16  # parallel (contact, channel) sends per notify
    LOCK_STRIPES: int = 64          # lock stripes per regulation arena
    SWEEP_INTERVAL_SECONDS: float = 30.0

    # ── Channel providers ──
    EMAIL_PROVIDER: str = "simulation"  # simulation | webhook
    EMAIL_WEBHOOK_URL: Optional[str] = None
    EMAIL_FROM_ADDRESS: str = "notifications@example.com"
    EMAIL_FROM_NAME: str = "Notifications"
    SMS_PROVIDER: str = "simulation"
    SMS_WEBHOOK_URL: Optional[str] = None
    SMS_FROM_NUMBER: Optional[str] = None
    VOICE_PROVIDER: str = "simulation"
    VOICE_WEBHOOK_URL: Optional[str] = None
    VOICE_FROM_NUMBER: Optional[str] = None
    CHANNEL_TIMEOUT_SECONDS: float = 15.0
    CHANNEL_MAX_RETRIES: Optional[int] = None  # overrides per-channel retry counts
    IN_APP_INBOX_LIMIT: int = 100

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
