"""Configuration management for idxs."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://api.indexsupply.net/v2"


class Settings(BaseSettings):
    """Client settings, read from ``IDXS_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IDXS_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: str | None = Field(default=None, description="Index Supply API key")
    base_url: str = Field(default=DEFAULT_BASE_URL, description="Index Supply API base URL")
    fetch_retry_count: int = Field(default=5, ge=0, description="Attempts per fetch call")
    live_retry_count: int = Field(default=50, ge=0, description="Attempts per live session")
    timeout_seconds: float | None = Field(default=30.0, description="HTTP timeout; None disables it")
    log_level: str = Field(default="INFO", description="Log level")


def get_settings(**overrides: object) -> Settings:
    """Build settings from the environment, applying explicit overrides."""

    return Settings(**{key: value for key, value in overrides.items() if value is not None})
