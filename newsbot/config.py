"""Configuration loading from the environment (and an optional ``.env``)."""

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_DB_PATH = Path(__file__).parent / "storage" / "data" / "news.db"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime settings for the API, the ingestion paths and the push fan-out."""

    telegram_bot_token: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"

    admin_password: Optional[str] = None
    admin_secret: str = Field(default_factory=lambda: secrets.token_hex(32))
    admin_session_hours: int = 24

    push_gateway_url: str = "https://exp.host/--/api/v2/push/send"
    push_title: str = "📰 New Item!"

    db_path: Path = DEFAULT_DB_PATH
    feed_capacity: int = 50
    poll_interval_seconds: int = 0

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    structured_logging: bool = False

    @classmethod
    def from_env(cls, load_env: bool = True, dotenv_override: bool = False) -> "Settings":
        """Build settings from environment variables, reading ``.env`` first."""
        if load_env:
            load_dotenv(override=dotenv_override)

        values = {
            "telegram_bot_token": os.getenv("TELEGRAM_BOT_TOKEN") or None,
            "admin_password": os.getenv("ADMIN_PASSWORD") or None,
            "structured_logging": _env_bool("LOG_JSON"),
        }
        optional = {
            "telegram_api_base": "TELEGRAM_API_BASE",
            "admin_secret": "ADMIN_TOKEN",
            "admin_session_hours": "ADMIN_SESSION_HOURS",
            "push_gateway_url": "PUSH_GATEWAY_URL",
            "push_title": "PUSH_TITLE",
            "db_path": "NEWS_DB_PATH",
            "feed_capacity": "FEED_CAPACITY",
            "poll_interval_seconds": "POLL_INTERVAL_SECONDS",
            "host": "HOST",
            "port": "PORT",
            "log_level": "LOG_LEVEL",
        }
        for field, env_name in optional.items():
            raw = os.getenv(env_name)
            if raw:
                values[field] = raw
        return cls(**values)
