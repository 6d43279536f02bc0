"""Application configuration via Pydantic Settings.

Reads environment variables (and optional .env file) and validates them
at startup.  Only the process entry point calls ``get_settings()``;
everything else receives a ``Settings`` instance by injection.
"""

from __future__ import annotations

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Validated application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Storage ---------------------------------------------------------
    DATABASE_URL: str = "sqlite+aiosqlite:///./gcal.db"
    STORAGE_RETRIES: int = 0

    # --- Remote nutrition service ---------------------------------------
    # Fallback only; the key saved in Settings screen takes precedence.
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SECONDS: int = 30

    # --- Day boundaries and water tracking -------------------------------
    TIMEZONE: str = "UTC"
    WATER_GOAL_ML: int = 2500
    WATER_STEP_ML: int = 250

    # --- Misc ------------------------------------------------------------
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    # --- Validators ------------------------------------------------------
    @property
    def tzinfo(self) -> ZoneInfo:
        """``ZoneInfo`` for ``TIMEZONE``."""
        return ZoneInfo(self.TIMEZONE)

    @field_validator("TIMEZONE")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @field_validator("OPENAI_TIMEOUT_SECONDS", "WATER_GOAL_ML", "WATER_STEP_ML", "PORT")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("STORAGE_RETRIES")
    @classmethod
    def _validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("STORAGE_RETRIES must not be negative")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings singleton."""
    return Settings()
