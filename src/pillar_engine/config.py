# src/pillar_engine/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole engine (normal "settings layer").
- Nothing required at import time; every value has a default.
- The sweep cadence lives here, not in the scheduler: the engine only knows "run one sweep".
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "PILLAR"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


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
    db_path: Path

    # ---- Notification sweep ----
    sweep_interval_seconds: float
    sweep_initial_delay_seconds: float
    sweep_batch_limit: int
    sweep_max_workers: int

    # ---- Preferences ----
    default_timezone: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "pillar-engine") or "pillar-engine"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/pillar"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "pillar.sqlite3")

        # Every 2 minutes, first sweep 10s after boot.
        sweep_interval_seconds = _env_float(_k("SWEEP_INTERVAL_SECONDS"), 120.0)
        sweep_initial_delay_seconds = _env_float(_k("SWEEP_INITIAL_DELAY_SECONDS"), 10.0)
        sweep_batch_limit = _env_int(_k("SWEEP_BATCH_LIMIT"), 500)
        sweep_max_workers = _env_int(_k("SWEEP_MAX_WORKERS"), 4)

        default_timezone = _env(_k("DEFAULT_TIMEZONE"), "UTC").strip() or "UTC"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            sweep_interval_seconds=sweep_interval_seconds,
            sweep_initial_delay_seconds=sweep_initial_delay_seconds,
            sweep_batch_limit=max(1, sweep_batch_limit),
            sweep_max_workers=max(1, sweep_max_workers),
            default_timezone=default_timezone,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
