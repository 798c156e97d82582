# tests/test_backends.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from sau_monitor.storage.backends import MemoryBackend, SqliteBackend


@pytest.mark.asyncio
async def test_sqlite_set_get_remove_clear(tmp_path: Path) -> None:
    db = SqliteBackend(tmp_path / "local.sqlite3")

    await db.set({"ignored": {"A": True}, "lastCheckTimestamp": 123, "knownTasks": [{"numero": "1"}]})

    assert await db.get(["ignored", "missing"]) == {"ignored": {"A": True}}
    assert await db.get([]) == {}
    assert set(await db.get(None)) == {"ignored", "lastCheckTimestamp", "knownTasks"}

    await db.set({"ignored": {"B": True}})
    assert (await db.get(["ignored"]))["ignored"] == {"B": True}

    await db.remove(["ignored"])
    assert "ignored" not in await db.get(None)

    await db.clear()
    assert await db.get(None) == {}
    assert await db.is_available() is True


@pytest.mark.asyncio
async def test_sqlite_batch_is_all_or_nothing(tmp_path: Path) -> None:
    db = SqliteBackend(tmp_path / "local.sqlite3")

    with pytest.raises(TypeError):
        await db.set({"good": 1, "bad": object()})

    assert await db.get(None) == {}


@pytest.mark.asyncio
async def test_sqlite_data_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "sync.sqlite3"
    await SqliteBackend(path).set({"snoozed": {"T1": 1_700_000_060_000}})

    reopened = SqliteBackend(path)

    assert await reopened.get(["snoozed"]) == {"snoozed": {"T1": 1_700_000_060_000}}
    assert await reopened.bytes_in_use() > 0
    assert reopened.db_path == path


@pytest.mark.asyncio
async def test_sqlite_invalid_json_is_returned_as_text(tmp_path: Path) -> None:
    path = tmp_path / "local.sqlite3"
    db = SqliteBackend(path)

    conn = sqlite3.connect(str(path))
    with conn:
        conn.execute("INSERT INTO kv(key, value, updated_at) VALUES ('broken', '{oops', 0)")
    conn.close()

    assert await db.get(["broken"]) == {"broken": "{oops"}


@pytest.mark.asyncio
async def test_memory_backend_copies_values() -> None:
    backend = MemoryBackend()
    value = {"A": True}

    await backend.set({"ignored": value})
    value["B"] = True
    got = await backend.get(["ignored"])
    got["ignored"]["C"] = True

    assert await backend.get(["ignored"]) == {"ignored": {"A": True}}


@pytest.mark.asyncio
async def test_memory_backend_rejects_unserializable_batch() -> None:
    backend = MemoryBackend({"keep": 1})

    with pytest.raises(TypeError):
        await backend.set({"keep": 2, "bad": {1, 2}})

    assert await backend.get(None) == {"keep": 1}
    assert await backend.bytes_in_use() > 0
