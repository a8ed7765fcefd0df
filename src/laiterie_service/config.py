"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings used to configure the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = Field(
        default="Laiterie Ordering Service",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./laiterie.db",
        description="SQLAlchemy compatible database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    admin_email: str = Field(
        default="admin@laiterie.com",
        description="The one email address granted administrator capabilities.",
    )
    local_store_path: str = Field(
        default="./laiterie_local.json",
        description="Device-local JSON file holding the session token and caches.",
    )
    offline_fallback: bool = Field(
        default=True,
        description="Serve the locally cached catalog/orders when the database is unreachable.",
    )
    placeholder_image_url: str = Field(
        default="https://picsum.photos/seed/defaultproduct/200/200",
        description="Image used for imported products that carry none.",
    )
    log_level: str = Field(default="INFO")

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["Settings", "get_settings"]
