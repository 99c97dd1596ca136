# src/stageboard/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets or remote configuration required: defaults give a local-only app.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "STAGEBOARD"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


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


def _env_path(name: str, default: Path | None) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data ----
    data_dir: Path
    state_key: str
    migration_key: str
    persist_debounce_ms: int
    seed_on_first_run: bool

    # ---- Remote sync ----
    sync_enabled: bool
    sync_db_path: Path | None
    sync_user_id: str
    sync_poll_seconds: float

    @property
    def sync_configured(self) -> bool:
        return self.sync_db_path is not None

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/stageboard")) or Path(".local/stageboard")

        return Settings(
            app_name=_env(_k("APP_NAME"), "stageboard"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            data_dir=data_dir,
            state_key=_env(_k("STATE_KEY"), "sm_todo_v1"),
            migration_key=_env(_k("MIGRATION_KEY"), "sm_cloud_migrated_v1"),
            persist_debounce_ms=max(0, _env_int(_k("PERSIST_DEBOUNCE_MS"), 200)),
            seed_on_first_run=_env_bool(_k("SEED_ON_FIRST_RUN"), True),
            sync_enabled=_env_bool(_k("SYNC_ENABLED"), False),
            sync_db_path=_env_path(_k("SYNC_DB_PATH"), None),
            sync_user_id=_env(_k("SYNC_USER_ID"), "").strip(),
            sync_poll_seconds=_env_float(_k("SYNC_POLL_SECONDS"), 1.0),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
