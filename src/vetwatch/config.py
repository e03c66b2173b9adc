# src/vetwatch/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Services take Settings as a constructor argument; get_settings() is only for the CLI.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "VETWATCH"

DEFAULT_ESCALATION_KEYWORDS = ("emergency", "severe", "critical", "urgent", "distress")

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


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return tuple(default)
    return tuple(p.strip().lower() for p in raw.replace(",", " ").split() if p.strip())


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

    # ---- Persistence ----
    data_dir: Path
    store_backend: str  # "sqlite" | "memory"
    store_db_path: Path
    serialize_writes: bool

    # ---- Dashboard windows ----
    recent_completed_days: int
    deadline_window_days: int

    # ---- Recommendation thresholds ----
    response_rate_threshold: float
    update_quality_threshold: float
    reflection_min_chars: int

    # ---- Escalation ----
    escalation_concern_level: int
    escalation_keywords: tuple[str, ...]

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "vetwatch").strip() or "vetwatch"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/vetwatch"))
        store_backend = _env(_k("STORE_BACKEND"), "sqlite").strip().lower() or "sqlite"
        store_db_path = _env_path(_k("STORE_DB_PATH"), data_dir / "store.sqlite3")
        serialize_writes = _env_bool(_k("SERIALIZE_WRITES"), False)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            store_backend=store_backend,
            store_db_path=store_db_path,
            serialize_writes=serialize_writes,
            recent_completed_days=_env_int(_k("RECENT_COMPLETED_DAYS"), 30),
            deadline_window_days=_env_int(_k("DEADLINE_WINDOW_DAYS"), 7),
            response_rate_threshold=_env_float(_k("RESPONSE_RATE_THRESHOLD"), 0.8),
            update_quality_threshold=_env_float(_k("UPDATE_QUALITY_THRESHOLD"), 0.7),
            reflection_min_chars=_env_int(_k("REFLECTION_MIN_CHARS"), 50),
            escalation_concern_level=_env_int(_k("ESCALATION_CONCERN_LEVEL"), 4),
            escalation_keywords=_env_list(_k("ESCALATION_KEYWORDS"), DEFAULT_ESCALATION_KEYWORDS),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
