# src/sau_monitor/storage/backends.py

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from .sizing import calculate_data_size

logger = logging.getLogger(__name__)


class MemoryBackend:
    """
    Dict-backed storage tier.

    Used by tests and as the stand-in for a tier that has no on-disk store.
    Values are deep-copied on the way in and out, like a real serializing store.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None, *, available: bool = True) -> None:
        self._items: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self.available = available

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        if keys is None:
            return copy.deepcopy(self._items)
        return {k: copy.deepcopy(self._items[k]) for k in keys if k in self._items}

    async def set(self, items: Mapping[str, Any]) -> None:
        # Serialize first so a bad value leaves the store untouched.
        staged = {k: json.loads(json.dumps(v, ensure_ascii=False)) for k, v in items.items()}
        self._items.update(staged)

    async def remove(self, keys: Iterable[str]) -> None:
        for k in keys:
            self._items.pop(k, None)

    async def clear(self) -> None:
        self._items.clear()

    async def bytes_in_use(self) -> int:
        return calculate_data_size(self._items)

    async def is_available(self) -> bool:
        return self.available


class SqliteBackend:
    """
    SQLite key/value store for one storage tier.

    Schema: kv(key TEXT PRIMARY KEY, value TEXT NOT NULL, updated_at REAL NOT NULL),
    value holds JSON text.

    Thread-safety:
    - each method opens its own SQLite connection
    - blocking calls run in a worker thread (asyncio.to_thread)
    """

    def __init__(self, db_path: str | Path = "local.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self._count_sync()
        except Exception:
            total = -1
        logger.info("SqliteBackend ready db=%s keys=%s", self._db_path, total)

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def _count_sync(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM kv").fetchone()
            return int(n)
        finally:
            conn.close()

    @staticmethod
    def _decode(key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("SqliteBackend: key %s holds invalid JSON; returning raw text", key)
            return raw

    def _get_sync(self, keys: list[str] | None) -> dict[str, Any]:
        conn = self._get_conn()
        try:
            if keys is None:
                rows = conn.execute("SELECT key, value FROM kv").fetchall()
            elif not keys:
                return {}
            else:
                placeholders = ",".join("?" for _ in keys)
                rows = conn.execute(
                    f"SELECT key, value FROM kv WHERE key IN ({placeholders})",
                    tuple(keys),
                ).fetchall()
            return {str(r["key"]): self._decode(r["key"], r["value"]) for r in rows}
        finally:
            conn.close()

    def _set_sync(self, items: dict[str, Any]) -> None:
        # Encode everything before touching the DB: one bad value aborts the whole batch.
        now = time.time()
        rows = [(k, json.dumps(v, ensure_ascii=False), now) for k, v in items.items()]
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany(
                    """
                    INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    rows,
                )
            logger.debug("SqliteBackend set db=%s keys=%s", self._db_path, list(items))
        finally:
            conn.close()

    def _remove_sync(self, keys: list[str]) -> None:
        if not keys:
            return
        conn = self._get_conn()
        try:
            with conn:
                conn.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in keys])
        finally:
            conn.close()

    def _clear_sync(self) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute("DELETE FROM kv")
        finally:
            conn.close()

    def _bytes_in_use_sync(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) FROM kv"
            ).fetchone()
            return int(n)
        finally:
            conn.close()

    # ---- public API (async) ----

    async def get(self, keys: Iterable[str] | None = None) -> dict[str, Any]:
        return await asyncio.to_thread(self._get_sync, None if keys is None else list(keys))

    async def set(self, items: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._set_sync, dict(items))

    async def remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._remove_sync, list(keys))

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)

    async def bytes_in_use(self) -> int:
        return await asyncio.to_thread(self._bytes_in_use_sync)

    async def is_available(self) -> bool:
        try:
            await asyncio.to_thread(self._count_sync)
            return True
        except Exception:
            logger.warning("SqliteBackend unavailable db=%s", self._db_path, exc_info=True)
            return False
