"""
Application configuration using Pydantic Settings.

Automatically loads environment variables from .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str | None = None
    openai_model: str = "gpt-4.1"

    # Upper bound for a single extraction call, in seconds
    extraction_timeout_seconds: float = 60.0

    # Guest quota: rate_limit_quota conversions per rate_limit_window_hours
    rate_limit_quota: int = 2
    rate_limit_window_hours: float = 6.0

    # How PDFs are handed to the model: the whole file or its extracted text
    normalization_strategy: Literal["data_uri", "plain_text"] = "data_uri"

    # Idle sessions are dropped after this many minutes (0 keeps them forever)
    session_ttl_minutes: float = 60.0

    # Debug flags
    debug: bool = False

    model_config = SettingsConfigDict(
        # Load from .env file in the converter directory
        env_file=Path(__file__).parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Case insensitive environment variable names
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration loaded from environment.
    """
    return Settings()
