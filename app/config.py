# app/config.py
from __future__ import annotations

from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives next to the app/ package (project root)
ENV_FILE = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(ENV_FILE, override=False)  # pre-load into the process environment


class Settings(BaseSettings):
    # ---- App / Infra ----
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"

    # ---- XP engine ----
    # Daily counters roll over at midnight in this zone.
    XP_TIMEZONE: str = "UTC"
    XP_DEFAULT_DECAY_DAYS: int = Field(default=90, gt=0)
    XP_DECAY_BATCH_SIZE: int = Field(default=100, gt=0)
    XP_COUNTER_PREFIX: str = "xp:daily:"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown LOG_LEVEL: {value}")
        return normalized

    @field_validator("XP_TIMEZONE")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown XP_TIMEZONE: {value}") from exc
        return value


settings = Settings()


def require_database_url() -> str:
    """
    Runtime check with a clear message when the DSN is missing.
    """
    if not settings.DATABASE_URL:
        raise RuntimeError(
            "DATABASE_URL is not set. Check .env "
            f"(tried loading from: {ENV_FILE})."
        )
    return settings.DATABASE_URL


def get_xp_timezone() -> ZoneInfo:
    return ZoneInfo(settings.XP_TIMEZONE)
