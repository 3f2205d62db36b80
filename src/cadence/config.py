# src/cadence/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- Components receive settings by injection; get_settings() is only used by
  the composition root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "CADENCE"

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
    tasks_db_path: Path
    series_db_path: Path

    # ---- Scheduler ----
    scheduler_enabled: bool
    scheduler_interval_seconds: float
    scheduler_workers: int
    cas_max_attempts: int
    user_cas_max_attempts: int
    max_catchup_per_tick: int
    claim_timeout_seconds: float

    # ---- Calculator / display ----
    max_calculation_steps: int
    preview_default_count: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "cadence") or "cadence"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/cadence"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        series_db_path = _env_path(_k("SERIES_DB_PATH"), data_dir / "series.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            series_db_path=series_db_path,
            scheduler_enabled=_env_bool(_k("SCHEDULER_ENABLED"), True),
            scheduler_interval_seconds=_env_float(_k("SCHEDULER_INTERVAL_SECONDS"), 60.0),
            scheduler_workers=max(1, _env_int(_k("SCHEDULER_WORKERS"), 4)),
            cas_max_attempts=max(1, _env_int(_k("CAS_MAX_ATTEMPTS"), 3)),
            user_cas_max_attempts=max(1, _env_int(_k("USER_CAS_MAX_ATTEMPTS"), 10)),
            max_catchup_per_tick=max(1, _env_int(_k("MAX_CATCHUP_PER_TICK"), 32)),
            claim_timeout_seconds=_env_float(_k("CLAIM_TIMEOUT_SECONDS"), 300.0),
            max_calculation_steps=max(1, _env_int(_k("MAX_CALCULATION_STEPS"), 10_000)),
            preview_default_count=max(1, _env_int(_k("PREVIEW_DEFAULT_COUNT"), 10)),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
