"""Configuration management for Mail Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAIL_SYNC_ prefix (e.g., MAIL_SYNC_API_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAIL_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # JMAP server
    api_url: str | None = Field(
        default=None,
        description="URL of the JMAP API endpoint method calls are POSTed to",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token sent with every API request, if set",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout for API requests in seconds",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (logs at DEBUG regardless of log_level)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
