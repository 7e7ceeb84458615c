from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/confessions.db"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Hosted backend; local-only mode when either value is missing
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    database_url: str = Field(
        default=DEFAULT_DATABASE_URL,
        alias="DATABASE_URL",
    )
    log_file: Path = Field(default=Path("logs/confessions.log"))
    request_timeout_seconds: float = Field(default=10.0)
    retry_attempts: int = Field(default=3)

    # Edge rate limiting
    rate_limit_api: int = Field(default=30, alias="RATE_LIMIT_API")
    rate_limit_pages: int = Field(default=90, alias="RATE_LIMIT_PAGES")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SEC")
    rate_limit_cleanup_seconds: int = Field(default=60, alias="RATE_LIMIT_CLEANUP_SEC")

    # Board
    feed_page_size: int = Field(default=10, alias="FEED_PAGE_SIZE")
    max_rows_for_counts: int = Field(default=100_000)
    local_max_confessions: int = Field(default=500, alias="LOCAL_MAX_CONFESSIONS")

    version: str = Field(default_factory=lambda: Settings._load_version())

    @property
    def backend_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @staticmethod
    def _load_version() -> str:
        version_env = os.getenv("VERSION")
        if version_env:
            return version_env
        version_file = Path("VERSION")
        if version_file.exists():
            return version_file.read_text(encoding="utf-8").strip()
        return "0.0.0"

    @field_validator("supabase_url", "supabase_anon_key", mode="before")
    @classmethod
    def _strip_backend_value(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = str(value).strip()
        return stripped or None

    @field_validator("supabase_url", mode="after")
    @classmethod
    def _trim_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Path | str) -> Path:
        path = Path(value)
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("rate_limit_window_seconds", "rate_limit_cleanup_seconds", mode="before")
    @classmethod
    def _validate_window(cls, value: int | str | None) -> int:
        if value is None:
            return 60
        return max(int(value), 1)

    @field_validator("rate_limit_api", "rate_limit_pages", mode="before")
    @classmethod
    def _validate_limit(cls, value: int | str | None) -> int:
        if value is None:
            return 0
        return max(int(value), 0)

    @field_validator("feed_page_size", mode="before")
    @classmethod
    def _validate_page_size(cls, value: int | str | None) -> int:
        if value is None:
            return 10
        return min(max(int(value), 1), 100)

    @field_validator("database_url", mode="before")
    @classmethod
    def _default_database_url(cls, value: str | None) -> str:
        return str(value) if value else DEFAULT_DATABASE_URL


@lru_cache
def get_settings() -> Settings:
    """Cached settings accessor."""

    return Settings()
