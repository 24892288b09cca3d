# src/habit_tracker/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- Nothing is required at import time; every value has a default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "HABIT"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


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

    # ---- Connector flags ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Engine policy ----
    strict_frequency: bool
    default_target: int
    lock_timeout_seconds: int

    # ---- Display ----
    date_format: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "habit-tracker") or "habit-tracker"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/habit_tracker"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        strict_frequency = _env_bool(_k("STRICT_FREQUENCY"), True)
        default_target = max(1, _env_int(_k("DEFAULT_TARGET"), 1))
        lock_timeout_seconds = max(1, _env_int(_k("LOCK_TIMEOUT_SECONDS"), 30))

        date_format = _env(_k("DATE_FORMAT"), "iso").strip().lower()
        if date_format not in ("iso", "dmy"):
            date_format = "iso"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            strict_frequency=strict_frequency,
            default_target=default_target,
            lock_timeout_seconds=lock_timeout_seconds,
            date_format=date_format,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
