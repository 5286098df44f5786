# src/taskplus/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing required at import time: every value has a local default.
- All data lives under a gitignored local directory by default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKPLUS"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    document_path: Path

    # ---- Time ----
    timezone: str  # IANA name; empty = system local time

    # ---- Store defaults ----
    reminder_lead_minutes: int
    seed_default_categories: bool

    # ---- Delivery loop ----
    delivery_interval_seconds: float
    delivery_retry_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskplus")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskplus"))
        document_path = _env_path(_k("DOCUMENT_PATH"), data_dir / "taskplus.json")

        timezone = _env(_k("TIMEZONE"), "").strip()

        reminder_lead_minutes = max(0, _env_int(_k("REMINDER_LEAD_MINUTES"), 30))
        seed_default_categories = _env_bool(_k("SEED_DEFAULT_CATEGORIES"), True)

        delivery_interval_seconds = _env_float(_k("DELIVERY_INTERVAL_SECONDS"), 15.0)
        delivery_retry_seconds = _env_float(_k("DELIVERY_RETRY_SECONDS"), 60.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            document_path=document_path,
            timezone=timezone,
            reminder_lead_minutes=reminder_lead_minutes,
            seed_default_categories=seed_default_categories,
            delivery_interval_seconds=delivery_interval_seconds,
            delivery_retry_seconds=delivery_retry_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
