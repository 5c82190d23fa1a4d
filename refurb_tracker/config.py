"""
Configuration settings for the refurb tracker.

Uses Pydantic Settings to load environment variables for database connections,
logging, lifecycle selection, and metrics windows. The lifecycle variant is
chosen once at startup; nothing in the engine reads ambient state after that.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("refurb_tracker", alias="DB_NAME")
    pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")
    change_channel: str = Field("refurb_changes", alias="CHANGE_CHANNEL")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Lifecycle engine
    lifecycle: Literal["shipping", "fulfillment"] = Field("shipping", alias="REFURB_LIFECYCLE")
    timezone: str = Field("UTC", alias="REFURB_TIMEZONE")
    request_code_attempts: int = Field(2, ge=1, alias="REQUEST_CODE_ATTEMPTS")

    # Metrics windows
    short_window_days: int = Field(7, ge=1, alias="METRICS_SHORT_WINDOW_DAYS")
    long_window_days: int = Field(30, ge=1, alias="METRICS_LONG_WINDOW_DAYS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


def build_dsn(settings: Settings | None = None) -> str:
    """Compose a PostgreSQL DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


__all__ = ["Settings", "build_dsn", "get_settings"]
