# tests/test_config.py

from __future__ import annotations

from pathlib import Path

from sau_monitor.config import Settings


def test_defaults_when_env_is_empty(monkeypatch) -> None:
    for name in ("SAU_DATA_DIR", "SAU_SYNC_KEYS", "SAU_CHECK_INTERVAL_SECONDS", "SAU_MATRIX_ROOM_ID"):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()

    assert s.data_dir == Path(".local/sau")
    assert s.local_db_path == Path(".local/sau") / "local.sqlite3"
    assert s.sync_keys == []
    assert s.check_interval_seconds == 60.0
    assert s.matrix_room_id is None


def test_env_overrides_and_invalid_numbers(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SAU_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SAU_SYNC_KEYS", "ignored, opened bogusKey")
    monkeypatch.setenv("SAU_ENABLE_RENOTIFICATION", "yes")
    monkeypatch.setenv("SAU_RETENTION_DAYS", "7.5")
    monkeypatch.setenv("SAU_MAX_RETRIES", "not-a-number")

    s = Settings.from_env()

    assert s.data_dir == tmp_path
    assert s.sync_db_path == tmp_path / "sync.sqlite3"
    assert s.sync_keys == ["ignored", "opened"]
    assert s.enable_renotification is True
    assert s.retention_days == 7.5
    assert s.max_retries == 3
