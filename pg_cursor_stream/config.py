"""
Configuration settings for pg-cursor-stream.

Uses Pydantic Settings to load environment variables for cursor defaults,
logging, and the connection helpers used by the bundled CLI. Library callers
that bring their own connection only ever touch the `cursor_*` fields.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database (CLI and integration tests only)
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("postgres", alias="DB_NAME")
    connect_attempts: int = Field(3, alias="CONNECT_ATTEMPTS", ge=1)

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Cursor defaults
    cursor_batch_size: int = Field(1_000, alias="CURSOR_BATCH_SIZE", gt=0)
    cursor_name_prefix: str = Field(
        "cursor_stream",
        alias="CURSOR_NAME_PREFIX",
        pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
        max_length=48,
    )

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
