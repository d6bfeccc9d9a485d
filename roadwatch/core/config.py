"""
RoadWatch AI - Configuration Management
Centralized configuration using pydantic-settings.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./roadwatch.db"
    db_pool_size: int = 5
    db_echo: bool = False

    # AI parsing backend ("gemini" or "rule_based")
    ai_backend: str = "gemini"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-lite"
    ai_timeout_seconds: float = 15.0

    # Incident lifecycle
    incident_ttl_minutes: int = 60
    merge_radius_m: float = 50.0
    merge_window_minutes: int = 10
    verification_threshold: int = Field(default=2, ge=2)
    false_report_deny_threshold: int = 3
    description_max_length: int = 500

    # Reporter trust
    trust_initial_score: int = 50
    trust_report_delta: int = 3
    trust_vote_delta: int = 1
    trust_false_report_penalty: int = 10

    # Intake
    pending_ttl_minutes: int = 30
    nearby_radius_km: float = 5.0
    active_max_age_minutes: int = 240

    # Scheduler
    expiry_interval_minutes: int = 15
    digest_enabled: bool = True
    digest_hour_local: int = 6
    digest_utc_offset_hours: int = 1

    # Telegram channel (broadcast sink)
    telegram_bot_token: Optional[str] = None
    telegram_channel_id: Optional[str] = None

    # Reverse geocoding (OpenStreetMap Nominatim)
    geocoder_enabled: bool = False
    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocoder_user_agent: str = "RoadWatchAI/1.0 (road incident reporting)"

    # API Settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_channel_id)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
