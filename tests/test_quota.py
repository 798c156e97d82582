# tests/test_quota.py

from __future__ import annotations

import pytest

from sau_monitor.storage.backends import MemoryBackend
from sau_monitor.storage.gateway import PersistentStoreGateway
from sau_monitor.storage.quota import QuotaLimits, QuotaValidator, StorageTier, StorageUsage
from sau_monitor.storage.sizing import calculate_data_size, format_bytes

MB = 1024 * 1024


class UnreadableBackend(MemoryBackend):
    async def get(self, keys=None):
        raise OSError("storage offline")


@pytest.mark.asyncio
async def test_write_over_total_limit_is_rejected_without_partial_write() -> None:
    local = MemoryBackend()
    gateway = PersistentStoreGateway({StorageTier.LOCAL: local})

    res = await gateway.safe_set(StorageTier.LOCAL, {"small": "ok", "big": "x" * (6 * MB)})

    assert res.success is False
    assert res.quota_exceeded is True
    assert "total size" in (res.error or "")
    assert await local.get(None) == {}


@pytest.mark.asyncio
async def test_all_violations_are_reported() -> None:
    backends = {StorageTier.SYNC: MemoryBackend(), StorageTier.LOCAL: MemoryBackend()}
    validator = QuotaValidator(backends, {StorageTier.SYNC: QuotaLimits(total_bytes=100, item_bytes=50, max_items=1)})

    result = await validator.validate(StorageTier.SYNC, {"a": "x" * 80, "b": "y" * 80})

    assert result.valid is False
    kinds = sorted(v.kind for v in result.violations)
    assert kinds == ["itemCount", "itemSize", "itemSize", "totalSize"]
    assert result.reason is not None and result.reason.count(";") == 3
    assert len(result.details["violations"]) == 4


@pytest.mark.asyncio
async def test_overwritten_keys_are_credited_when_prior_data_is_known() -> None:
    existing = {"knownTasks": "a" * (60 * 1024)}
    backends = {StorageTier.SYNC: MemoryBackend(existing), StorageTier.LOCAL: MemoryBackend()}
    validator = QuotaValidator(backends, {StorageTier.SYNC: QuotaLimits(total_bytes=100 * 1024)})
    proposed = {"knownTasks": "b" * (60 * 1024)}

    known = await validator.validate(StorageTier.SYNC, proposed)
    assert known.valid is True
    assert known.details["estimatedItemCount"] == 1

    # Size-only usage: the overwrite cannot be credited, so the estimate errs high.
    opaque = StorageUsage(bytes_in_use=calculate_data_size(existing), item_count=1)
    unknown = await validator.validate(StorageTier.SYNC, proposed, current_usage=opaque)
    assert unknown.valid is False
    assert unknown.violations[0].kind == "totalSize"


@pytest.mark.asyncio
async def test_overwrite_credit_never_underestimates_several_keys() -> None:
    existing = {"a": "x", "b": "y", "c": "z"}
    backends = {StorageTier.LOCAL: MemoryBackend(existing)}
    validator = QuotaValidator(backends)

    result = await validator.validate(StorageTier.LOCAL, dict(existing))

    assert result.details["estimatedNewSize"] >= calculate_data_size(existing)
    assert result.details["estimatedItemCount"] == 3


@pytest.mark.asyncio
async def test_relaxed_tier_checks_total_size_only() -> None:
    backends = {StorageTier.LOCAL: MemoryBackend()}
    validator = QuotaValidator(backends)

    many = {f"k{i}": "v" for i in range(600)}
    many["huge"] = "x" * (200 * 1024)
    result = await validator.validate(StorageTier.LOCAL, many)

    assert result.valid is True
    assert result.violations == []


@pytest.mark.asyncio
async def test_strict_tier_default_limits() -> None:
    backends = {StorageTier.SYNC: MemoryBackend(), StorageTier.LOCAL: MemoryBackend()}
    validator = QuotaValidator(backends)

    result = await validator.validate(StorageTier.SYNC, {"knownTasks": "x" * (9 * 1024)})

    assert result.valid is False
    assert [v.kind for v in result.violations] == ["itemSize"]
    assert result.violations[0].key == "knownTasks"


@pytest.mark.asyncio
async def test_validation_error_is_reported_not_raised() -> None:
    validator = QuotaValidator({StorageTier.LOCAL: UnreadableBackend()})

    result = await validator.validate(StorageTier.LOCAL, {"a": 1})

    assert result.valid is False
    assert result.reason is not None and result.reason.startswith("internal error")
    assert result.quota_exceeded is False


def test_format_bytes() -> None:
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * MB) == "5 MB"
