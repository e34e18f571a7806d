"""
Application configuration using 12-factor environment variables.
"""
from functools import lru_cache
from typing import List

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
    app_name: str = Field(default="chathook")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    cors_origins: List[str] = Field(default=["*"])

    # Database
    database_url: str = Field(default="sqlite:///./data/chathook.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # Message normalization
    local_user_id: str = Field(default="me", description="Sentinel naming the local user in payloads")
    content_max_length: int = Field(default=4096, ge=1)
    raw_fallback_length: int = Field(default=1000, ge=1)
    reply_preview_length: int = Field(default=100, ge=1)

    # Conversation paging
    default_page_size: int = Field(default=50, ge=1)
    max_page_size: int = Field(default=200, ge=1)

    # Simulated delivery of locally sent messages
    simulate_delivery: bool = Field(default=True)
    delivery_delay_seconds: float = Field(default=1.0, ge=0)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
