# tests/test_gateway.py

from __future__ import annotations

import pytest

from sau_monitor.storage.backends import MemoryBackend
from sau_monitor.storage.codec import EnvelopeCodec, is_envelope
from sau_monitor.storage.gateway import PersistentStoreGateway, WriteStatus
from sau_monitor.storage.quota import QuotaLimits, QuotaValidator, StorageTier

from .fakes import FailingBackend, task_record


def _gateway(local, sync=None, *, local_limit=None, sync_limits=None, key_tiers=None) -> PersistentStoreGateway:
    backends = {StorageTier.LOCAL: local}
    if sync is not None:
        backends[StorageTier.SYNC] = sync
    limits = {}
    if local_limit is not None:
        limits[StorageTier.LOCAL] = QuotaLimits(total_bytes=local_limit)
    if sync_limits is not None:
        limits[StorageTier.SYNC] = sync_limits
    return PersistentStoreGateway(
        backends,
        codec=EnvelopeCodec(enabled=False),
        validator=QuotaValidator(backends, limits),
        key_tiers=key_tiers,
    )


def test_local_tier_is_required() -> None:
    with pytest.raises(ValueError):
        PersistentStoreGateway({StorageTier.SYNC: MemoryBackend()})


@pytest.mark.asyncio
async def test_persist_wraps_collections_and_writes_timestamp_raw() -> None:
    local = MemoryBackend()
    gw = _gateway(local)

    outcomes = await gw.persist({"ignored": {"A": True}, "lastCheckTimestamp": 42})

    assert [o.status for o in outcomes] == [WriteStatus.OK]
    assert outcomes[0].step == "validated"
    stored = await local.get(None)
    assert is_envelope(stored["ignored"])
    assert stored["lastCheckTimestamp"] == 42
    assert await gw.get(StorageTier.LOCAL, ["ignored", "lastCheckTimestamp"]) == {
        "ignored": {"A": True},
        "lastCheckTimestamp": 42,
    }


@pytest.mark.asyncio
async def test_sync_keys_are_written_to_both_tiers_and_read_from_sync() -> None:
    local, sync = MemoryBackend(), MemoryBackend()
    gw = _gateway(local, sync, key_tiers={"ignored": StorageTier.SYNC})

    outcomes = await gw.persist({"ignored": {"A": True}, "opened": {"B": True}})

    assert [(o.tier, o.ok) for o in outcomes] == [(StorageTier.SYNC, True), (StorageTier.LOCAL, True)]
    assert set(await sync.get(None)) == {"ignored"}
    assert set(await local.get(None)) == {"ignored", "opened"}

    # A newer value on sync wins over the local backup.
    await sync.set(gw.encode_items({"ignored": {"Z": True}}))
    loaded = await gw.load(["ignored", "opened"])
    assert loaded == {"ignored": {"Z": True}, "opened": {"B": True}}


@pytest.mark.asyncio
async def test_unavailable_sync_falls_back_to_local() -> None:
    local, sync = MemoryBackend(), MemoryBackend(available=False)
    gw = _gateway(local, sync, key_tiers={"ignored": StorageTier.SYNC})

    outcomes = await gw.persist({"ignored": {"A": True}})

    assert [o.tier for o in outcomes] == [StorageTier.LOCAL]
    assert await sync.get(None) == {}
    assert await gw.load(["ignored"]) == {"ignored": {"A": True}}


@pytest.mark.asyncio
async def test_rejected_sync_write_keeps_local_copy() -> None:
    local, sync = MemoryBackend(), MemoryBackend()
    gw = _gateway(
        local,
        sync,
        sync_limits=QuotaLimits(total_bytes=100 * 1024, item_bytes=64, max_items=512),
        key_tiers={"knownTasks": StorageTier.SYNC},
    )

    outcomes = await gw.persist({"knownTasks": [task_record("1")]})

    assert outcomes[0].tier == StorageTier.SYNC
    assert outcomes[0].status == WriteStatus.QUOTA_EXCEEDED
    assert outcomes[1].ok
    assert await sync.get(None) == {}
    assert (await gw.load(["knownTasks"]))["knownTasks"][0]["numero"] == "1"


@pytest.mark.asyncio
async def test_rejected_sync_write_drops_older_sync_copy() -> None:
    local, sync = MemoryBackend(), MemoryBackend()
    gw = _gateway(
        local,
        sync,
        sync_limits=QuotaLimits(total_bytes=100 * 1024, item_bytes=300, max_items=512),
        key_tiers={"ignored": StorageTier.SYNC},
    )
    await gw.persist({"ignored": {"A": True}})
    assert set(await sync.get(None)) == {"ignored"}

    bigger = {f"task-{n}": True for n in range(40)}
    outcomes = await gw.persist({"ignored": bigger})

    assert [(o.tier, o.status) for o in outcomes] == [
        (StorageTier.SYNC, WriteStatus.QUOTA_EXCEEDED),
        (StorageTier.LOCAL, WriteStatus.OK),
    ]
    assert await sync.get(None) == {}
    assert await gw.load(["ignored"]) == {"ignored": bigger}


@pytest.mark.asyncio
async def test_quota_failure_runs_cleanup_then_retries() -> None:
    local = MemoryBackend()
    gw = _gateway(local, local_limit=2048)
    big = {"knownTasks": ["x" * 4000]}
    small = {"knownTasks": ["y"]}
    calls = []

    async def cleanup():
        calls.append(1)
        return small

    outcomes = await gw.persist(big, cleanup=cleanup)

    assert calls == [1]
    assert outcomes[-1].ok
    assert outcomes[-1].step == "cleanup_and_retry"
    assert await gw.get(StorageTier.LOCAL, ["knownTasks"]) == small


@pytest.mark.asyncio
async def test_quota_failure_after_cleanup_forces_unvalidated_write() -> None:
    local = MemoryBackend()
    gw = _gateway(local, local_limit=2048)
    big = {"knownTasks": ["x" * 4000]}

    async def useless_cleanup():
        return big

    outcomes = await gw.persist(big, cleanup=useless_cleanup)

    assert outcomes[-1].ok
    assert outcomes[-1].step == "unvalidated"
    assert await gw.get(StorageTier.LOCAL, ["knownTasks"]) == big


@pytest.mark.asyncio
async def test_backend_errors_degrade_to_emergency_raw_write() -> None:
    local = FailingBackend(fail_sets=2)
    gw = _gateway(local)
    values = {"opened": {"A": True}}

    outcomes = await gw.persist(values, cleanup=None)

    assert outcomes[-1].ok
    assert outcomes[-1].step == "emergency_raw"
    # validated + unvalidated failed; cleanup is skipped for non-quota errors.
    assert local.set_calls == 3
    assert await local.get(None) == {"opened": {"A": True}}
    assert await gw.get(StorageTier.LOCAL, ["opened"]) == values


@pytest.mark.asyncio
async def test_total_failure_reports_last_error() -> None:
    local = FailingBackend(fail_sets=99)
    gw = _gateway(local)

    outcomes = await gw.persist({"opened": {"A": True}})

    assert not outcomes[-1].ok
    assert outcomes[-1].status == WriteStatus.BACKEND_ERROR
    assert outcomes[-1].step == "emergency_raw"
    assert "disk full" in (outcomes[-1].error or "")


@pytest.mark.asyncio
async def test_migrate_legacy_wraps_raw_values() -> None:
    local = MemoryBackend({"ignored": {"A": True}, "lastCheckTimestamp": 7})
    gw = _gateway(local)

    migrated = await gw.migrate_legacy(["ignored", "lastCheckTimestamp", "opened"])

    assert migrated == ["ignored"]
    stored = await local.get(None)
    assert is_envelope(stored["ignored"])
    assert stored["lastCheckTimestamp"] == 7
    assert await gw.get(StorageTier.LOCAL, ["ignored"]) == {"ignored": {"A": True}}
    assert await gw.migrate_legacy(["ignored"]) == []


@pytest.mark.asyncio
async def test_storage_stats_reports_each_tier() -> None:
    local = MemoryBackend({"a": "x" * 100})
    gw = _gateway(local)

    stats = await gw.storage_stats()

    assert stats["sync"]["available"] is False
    assert stats["local"]["available"] is True
    assert stats["local"]["itemCount"] == 1
    assert stats["local"]["bytesInUse"] > 100
    assert stats["local"]["limits"]["totalBytes"] == 5 * 1024 * 1024
    assert 0 < stats["local"]["percentUsed"]["bytes"] < 1


@pytest.mark.asyncio
async def test_remove_deletes_from_every_tier() -> None:
    local, sync = MemoryBackend({"old": 1}), MemoryBackend({"old": 1})
    gw = _gateway(local, sync)

    await gw.remove(["old"])

    assert await local.get(None) == {}
    assert await sync.get(None) == {}
