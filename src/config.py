"""
Pomodoro Sync — Centralized configuration.

Loads all settings from .env. The bot entry point validates the keys
it needs; the KV server and the tests run without a bot token.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str = ""

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # Remote KV store (base URL of the /kv and /snapshot endpoints)
    KV_API_URL: str = "http://127.0.0.1:8787/api"
    HTTP_TIMEOUT_SECONDS: float = 5.0
    KEEPALIVE_TIMEOUT_SECONDS: float = 2.0

    # Local cache (SQLite)
    CACHE_PATH: str = "data/cache.db"

    # KV server
    KV_DATABASE_PATH: str = "data/kv.db"
    KV_HOST: str = "127.0.0.1"
    KV_PORT: int = 8787

    # Timing
    SYNC_DEBOUNCE_SECONDS: float = 0.5
    TICK_INTERVAL_SECONDS: float = 0.25
    ALARM_REPEAT_SECONDS: float = 30.0

    # LLM: fallbacks when the synced AI settings leave a field empty
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""
    LLM_API_KEY: str = ""

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "SYNC_DEBOUNCE_SECONDS", "TICK_INTERVAL_SECONDS", "ALARM_REPEAT_SECONDS",
        mode="before",
    )
    @classmethod
    def parse_positive_seconds(cls, v: str | float) -> float:
        value = float(v)
        if value <= 0:
            raise ValueError(f"Interval must be positive, got {value}")
        return value


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        KV_API_URL=os.getenv("KV_API_URL", "http://127.0.0.1:8787/api"),
        HTTP_TIMEOUT_SECONDS=os.getenv("HTTP_TIMEOUT_SECONDS", "5"),
        KEEPALIVE_TIMEOUT_SECONDS=os.getenv("KEEPALIVE_TIMEOUT_SECONDS", "2"),
        CACHE_PATH=os.getenv("CACHE_PATH", "data/cache.db"),
        KV_DATABASE_PATH=os.getenv("KV_DATABASE_PATH", "data/kv.db"),
        KV_HOST=os.getenv("KV_HOST", "127.0.0.1"),
        KV_PORT=os.getenv("KV_PORT", "8787"),
        SYNC_DEBOUNCE_SECONDS=os.getenv("SYNC_DEBOUNCE_SECONDS", "0.5"),
        TICK_INTERVAL_SECONDS=os.getenv("TICK_INTERVAL_SECONDS", "0.25"),
        ALARM_REPEAT_SECONDS=os.getenv("ALARM_REPEAT_SECONDS", "30"),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
