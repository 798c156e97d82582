# src/sau_monitor/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Components receive the settings object explicitly; nothing reads SETTINGS on its own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "SAU"

# Keys persisted by the task tracker. lastCheckTimestamp is written raw (never wrapped).
STATE_KEYS = (
    "knownTasks",
    "ignored",
    "snoozed",
    "opened",
    "notificationTimestamps",
    "lastCheckTimestamp",
)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real env vars win over the local .env file.
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


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


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
    log_buffer_size: int
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    local_db_path: Path
    sync_db_path: Path
    scrape_source_path: Path

    # ---- Storage tiers ----
    sync_enabled: bool
    sync_keys: List[str]
    sync_total_bytes: int
    sync_item_bytes: int
    sync_max_items: int
    local_total_bytes: int
    compression_enabled: bool
    compression_min_size: int

    # ---- Checking / reconciliation ----
    check_interval_seconds: float
    reconcile_chunk_size: int
    retention_days: float
    default_snooze_minutes: float

    # ---- Notifications ----
    enable_renotification: bool
    renotification_interval_minutes: float
    notification_cooldown_seconds: float

    # ---- Retries for external operations ----
    max_retries: int
    base_retry_delay_ms: int
    max_retry_delay_ms: int
    operation_timeout_seconds: float

    # ---- Matrix notifier (optional) ----
    matrix_enabled: bool
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_room_id: Optional[str]
    matrix_store_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "sau-monitor") or "sau-monitor"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/sau"))

        sync_keys = [k for k in _env_list(_k("SYNC_KEYS"), []) if k in STATE_KEYS]

        matrix_room_id = _env(_k("MATRIX_ROOM_ID"), "").strip() or None

        return Settings(
            app_name=app_name,
            log_level=log_level,
            log_buffer_size=_env_int(_k("LOG_BUFFER_SIZE"), 1000),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            data_dir=data_dir,
            local_db_path=_env_path(_k("LOCAL_DB_PATH"), data_dir / "local.sqlite3"),
            sync_db_path=_env_path(_k("SYNC_DB_PATH"), data_dir / "sync.sqlite3"),
            scrape_source_path=_env_path(_k("SCRAPE_SOURCE_PATH"), data_dir / "scraped_tasks.json"),
            sync_enabled=_env_bool(_k("SYNC_ENABLED"), True),
            sync_keys=sync_keys,
            sync_total_bytes=_env_int(_k("SYNC_TOTAL_BYTES"), 100 * 1024),
            sync_item_bytes=_env_int(_k("SYNC_ITEM_BYTES"), 8 * 1024),
            sync_max_items=_env_int(_k("SYNC_MAX_ITEMS"), 512),
            local_total_bytes=_env_int(_k("LOCAL_TOTAL_BYTES"), 5 * 1024 * 1024),
            compression_enabled=_env_bool(_k("COMPRESSION_ENABLED"), True),
            compression_min_size=_env_int(_k("COMPRESSION_MIN_SIZE"), 1024),
            check_interval_seconds=_env_float(_k("CHECK_INTERVAL_SECONDS"), 60.0),
            reconcile_chunk_size=_env_int(_k("RECONCILE_CHUNK_SIZE"), 50),
            retention_days=_env_float(_k("RETENTION_DAYS"), 30.0),
            default_snooze_minutes=_env_float(_k("DEFAULT_SNOOZE_MINUTES"), 15.0),
            enable_renotification=_env_bool(_k("ENABLE_RENOTIFICATION"), False),
            renotification_interval_minutes=_env_float(_k("RENOTIFICATION_INTERVAL_MINUTES"), 30.0),
            notification_cooldown_seconds=_env_float(_k("NOTIFICATION_COOLDOWN_SECONDS"), 15.0),
            max_retries=_env_int(_k("MAX_RETRIES"), 3),
            base_retry_delay_ms=_env_int(_k("BASE_RETRY_DELAY_MS"), 1000),
            max_retry_delay_ms=_env_int(_k("MAX_RETRY_DELAY_MS"), 10000),
            operation_timeout_seconds=_env_float(_k("OPERATION_TIMEOUT_SECONDS"), 30.0),
            matrix_enabled=_env_bool(_k("MATRIX_ENABLED"), False),
            matrix_homeserver=_env(_k("MATRIX_HOMESERVER"), "").strip(),
            matrix_user_id=_env(_k("MATRIX_USER_ID"), "").strip(),
            matrix_password=_env(_k("MATRIX_PASSWORD"), "").strip(),
            matrix_room_id=matrix_room_id,
            matrix_store_path=_env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store"),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
