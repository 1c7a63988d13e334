"""
Configuration settings for the achievement points core.

Uses Pydantic Settings to load environment variables for the store connection,
the ledger retry policy, and logging. Values can also come from a local `.env`
file; explicit environment variables win.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Store
    store_backend: str = Field("postgres", alias="STORE_BACKEND")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("achievement_points", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(5_000, alias="DB_STATEMENT_TIMEOUT_MS", ge=0)
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE", ge=0)
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE", ge=1)
    query_batch_size: int = Field(100, alias="QUERY_BATCH_SIZE", ge=1)

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Ledger retry policy
    ledger_max_attempts: int = Field(5, alias="LEDGER_MAX_ATTEMPTS", ge=1)
    ledger_backoff_base_seconds: float = Field(0.05, alias="LEDGER_BACKOFF_BASE_SECONDS", ge=0)
    ledger_backoff_cap_seconds: float = Field(1.0, alias="LEDGER_BACKOFF_CAP_SECONDS", ge=0)
    ledger_recent_operations: int = Field(128, alias="LEDGER_RECENT_OPERATIONS", ge=1)

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


__all__ = ["Settings", "get_settings"]
