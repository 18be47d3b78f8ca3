"""Configuration management for psi-agenda."""

from functools import lru_cache
from typing import Literal

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

    # Calendar
    timezone: str = Field(
        default="America/Sao_Paulo",
        description="Local timezone used to read legacy timestamp override keys",
    )
    default_session_minutes: int = Field(
        default=50,
        description="Session length used when a patient has no valid duration",
    )

    # Slot suggestions
    suggestion_start: str = Field(default="07:00", description="First grid time (HH:MM)")
    suggestion_end: str = Field(default="21:00", description="Last grid time (HH:MM)")
    suggestion_step_minutes: int = Field(default=10, description="Grid step in minutes")
    max_suggestions: int = Field(default=3, description="Suggestions returned on conflict")

    # Persistence
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/agenda.db",
        description="Async SQLAlchemy DSN for workspace settings storage",
    )
    persist_debounce_seconds: float = Field(
        default=0.6,
        description="Quiet period before background writes hit the store",
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)
    api_key: str = Field(
        default="",
        description="API key for authenticating requests",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Debug
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode (exposes error details in responses)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def has_api_key(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
