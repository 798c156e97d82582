# src/sau_monitor/storage/gateway.py

"""
Persistent store gateway.

Wraps the storage tiers with compression (EnvelopeCodec) and quota validation
(QuotaValidator). Writes go through an ordered list of degradation steps:

    validated -> cleanup_and_retry -> unvalidated -> emergency_raw

Each step returns a tagged WriteOutcome; the first successful one wins.
Keys routed to the SYNC tier are written there when it is available, and always
backed up to LOCAL (sync-preferred, local-required).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..core.ports import StorageBackend
from .codec import EnvelopeCodec, is_envelope
from .quota import QuotaValidator, StorageTier, StorageUsage
from .sizing import format_bytes

logger = logging.getLogger(__name__)

DEFAULT_RAW_KEYS = frozenset({"lastCheckTimestamp"})

# Called after a quota rejection; returns a fresh (smaller) snapshot of the values to write.
CleanupHook = Callable[[], Awaitable[Mapping[str, Any]]]


class WriteStatus(StrEnum):
    OK = "ok"
    QUOTA_EXCEEDED = "quota_exceeded"
    BACKEND_ERROR = "backend_error"
    SKIPPED = "skipped"


@dataclass(slots=True)
class SetResult:
    success: bool
    error: str | None = None
    validation: dict[str, Any] | None = None
    quota_exceeded: bool = False


@dataclass(slots=True)
class WriteOutcome:
    status: WriteStatus
    step: str
    tier: StorageTier
    keys: list[str] = field(default_factory=list)
    error: str | None = None
    validation: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == WriteStatus.OK


@dataclass(slots=True)
class _WriteContext:
    tier: StorageTier
    values: Mapping[str, Any]
    cleanup: CleanupHook | None
    last: WriteOutcome | None = None


class PersistentStoreGateway:
    def __init__(
        self,
        backends: Mapping[StorageTier, StorageBackend],
        *,
        codec: EnvelopeCodec | None = None,
        validator: QuotaValidator | None = None,
        key_tiers: Mapping[str, StorageTier] | None = None,
        raw_keys: Iterable[str] = DEFAULT_RAW_KEYS,
    ) -> None:
        if StorageTier.LOCAL not in backends:
            raise ValueError("a LOCAL storage backend is required")
        self._backends = dict(backends)
        self.codec = codec or EnvelopeCodec()
        self.validator = validator or QuotaValidator(self._backends)
        self._key_tiers = dict(key_tiers or {})
        self._raw_keys = frozenset(raw_keys)

    # ---- routing ----

    def tier_for(self, key: str) -> StorageTier:
        return self._key_tiers.get(key, StorageTier.LOCAL)

    async def sync_available(self) -> bool:
        backend = self._backends.get(StorageTier.SYNC)
        if backend is None:
            return False
        try:
            return bool(await backend.is_available())
        except Exception:
            logger.warning("storage.sync availability check failed", exc_info=True)
            return False

    def encode_items(self, values: Mapping[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key, value in values.items():
            if key in self._raw_keys:
                out[key] = value
            else:
                out[key] = self.codec.encode(value).to_dict()
        return out

    # ---- reads ----

    async def get(self, tier: StorageTier, keys: Iterable[str]) -> dict[str, Any]:
        """Compression-transparent read. Raw (non-envelope) values are returned as-is."""
        raw = await self._backends[tier].get(list(keys))
        return {k: self.codec.decode(v) for k, v in raw.items()}

    async def load(self, keys: Iterable[str]) -> dict[str, Any]:
        """Read keys from their preferred tier, falling back to LOCAL for missing ones."""
        keys = list(keys)
        result: dict[str, Any] = {}

        sync_keys = [k for k in keys if self.tier_for(k) == StorageTier.SYNC]
        if sync_keys and await self.sync_available():
            try:
                result.update(await self.get(StorageTier.SYNC, sync_keys))
            except Exception:
                logger.exception("storage.sync read failed; falling back to local")

        missing = [k for k in keys if k not in result]
        if missing:
            result.update(await self.get(StorageTier.LOCAL, missing))
        return result

    # ---- writes ----

    async def safe_set(self, tier: StorageTier, data: Mapping[str, Any]) -> SetResult:
        """Validate the whole batch, then write it. Nothing is written when validation fails."""
        try:
            validation = await self.validator.validate(tier, data)
            if not validation.valid:
                logger.warning("storage.%s set rejected: %s", tier, validation.reason)
                return SetResult(
                    success=False,
                    error=validation.reason,
                    validation=validation.details,
                    quota_exceeded=validation.quota_exceeded,
                )

            await self._backends[tier].set(data)
            logger.debug(
                "storage.%s set ok keys=%s size=%s",
                tier,
                list(data),
                format_bytes(validation.details.get("newDataSize", 0)),
            )
            return SetResult(success=True, validation=validation.details)
        except Exception as exc:
            logger.exception("storage.%s set failed", tier)
            return SetResult(success=False, error=str(exc) or type(exc).__name__)

    async def persist(
        self,
        values: Mapping[str, Any],
        *,
        cleanup: CleanupHook | None = None,
    ) -> list[WriteOutcome]:
        """
        Durably store `values` (key -> plain value).

        Returns one outcome per tier touched; LOCAL is always last.
        """
        outcomes: list[WriteOutcome] = []
        sync_values = {k: v for k, v in values.items() if self.tier_for(k) == StorageTier.SYNC}

        if sync_values:
            if await self.sync_available():
                outcome = await self._run_steps(
                    _WriteContext(StorageTier.SYNC, sync_values, None),
                    (("validated", self._step_validated),),
                )
                outcomes.append(outcome)
                if not outcome.ok:
                    logger.warning("storage.sync write failed (%s); keeping local copy only", outcome.error)
                    await self._drop_stale_sync(list(sync_values))
            else:
                logger.debug("storage.sync unavailable; writing %s to local only", list(sync_values))

        outcomes.append(
            await self._run_steps(
                _WriteContext(StorageTier.LOCAL, values, cleanup),
                (
                    ("validated", self._step_validated),
                    ("cleanup_and_retry", self._step_cleanup_and_retry),
                    ("unvalidated", self._step_unvalidated),
                    ("emergency_raw", self._step_emergency_raw),
                ),
            )
        )
        return outcomes

    async def _run_steps(
        self,
        ctx: _WriteContext,
        steps: Iterable[tuple[str, Callable[[_WriteContext], Awaitable[WriteOutcome]]]],
    ) -> WriteOutcome:
        for name, step in steps:
            outcome = await step(ctx)
            if outcome.ok:
                if name != "validated":
                    logger.warning("storage.%s write succeeded via degraded step '%s'", ctx.tier, name)
                return outcome
            if outcome.status == WriteStatus.SKIPPED:
                continue
            logger.warning("storage.%s step '%s' failed: %s", ctx.tier, name, outcome.error)
            ctx.last = outcome

        logger.error(
            "storage.%s: every write strategy failed; in-memory state is the only record of %s",
            ctx.tier,
            list(ctx.values),
        )
        assert ctx.last is not None
        return ctx.last

    def _from_set_result(self, ctx: _WriteContext, step: str, res: SetResult) -> WriteOutcome:
        if res.success:
            status = WriteStatus.OK
        elif res.quota_exceeded:
            status = WriteStatus.QUOTA_EXCEEDED
        else:
            status = WriteStatus.BACKEND_ERROR
        return WriteOutcome(
            status=status,
            step=step,
            tier=ctx.tier,
            keys=list(ctx.values),
            error=res.error,
            validation=res.validation,
        )

    async def _step_validated(self, ctx: _WriteContext) -> WriteOutcome:
        res = await self.safe_set(ctx.tier, self.encode_items(ctx.values))
        return self._from_set_result(ctx, "validated", res)

    async def _step_cleanup_and_retry(self, ctx: _WriteContext) -> WriteOutcome:
        if ctx.cleanup is None or ctx.last is None or ctx.last.status != WriteStatus.QUOTA_EXCEEDED:
            return WriteOutcome(WriteStatus.SKIPPED, "cleanup_and_retry", ctx.tier)
        try:
            ctx.values = dict(await ctx.cleanup())
        except Exception as exc:
            logger.exception("Cleanup before retry failed")
            return WriteOutcome(WriteStatus.BACKEND_ERROR, "cleanup_and_retry", ctx.tier, error=str(exc))
        res = await self.safe_set(ctx.tier, self.encode_items(ctx.values))
        return self._from_set_result(ctx, "cleanup_and_retry", res)

    async def _step_unvalidated(self, ctx: _WriteContext) -> WriteOutcome:
        try:
            await self._backends[ctx.tier].set(self.encode_items(ctx.values))
        except Exception as exc:
            logger.exception("Unvalidated write to storage.%s failed", ctx.tier)
            return WriteOutcome(WriteStatus.BACKEND_ERROR, "unvalidated", ctx.tier, list(ctx.values), str(exc))
        return WriteOutcome(WriteStatus.OK, "unvalidated", ctx.tier, list(ctx.values))

    async def _step_emergency_raw(self, ctx: _WriteContext) -> WriteOutcome:
        # Exact in-memory values, no envelopes: readable later as legacy data.
        try:
            await self._backends[ctx.tier].set(dict(ctx.values))
        except Exception as exc:
            logger.exception("Emergency raw write to storage.%s failed", ctx.tier)
            return WriteOutcome(WriteStatus.BACKEND_ERROR, "emergency_raw", ctx.tier, list(ctx.values), str(exc))
        return WriteOutcome(WriteStatus.OK, "emergency_raw", ctx.tier, list(ctx.values))

    # ---- maintenance ----

    async def _drop_stale_sync(self, keys: list[str]) -> None:
        """Sync copies older than the local write must not win on the next load."""
        try:
            await self._backends[StorageTier.SYNC].remove(keys)
        except Exception:
            logger.exception("Could not drop stale storage.sync keys %s", keys)

    async def remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if await self.sync_available():
            await self._backends[StorageTier.SYNC].remove(keys)
        await self._backends[StorageTier.LOCAL].remove(keys)

    async def migrate_legacy(self, keys: Iterable[str]) -> list[str]:
        """Re-wrap raw values stored before envelopes existed. Returns the migrated keys."""
        migrated: list[str] = []
        for tier, backend in self._backends.items():
            if tier == StorageTier.SYNC and not await self.sync_available():
                continue
            raw = await backend.get([k for k in keys if k not in self._raw_keys])
            legacy = {k: v for k, v in raw.items() if not is_envelope(v)}
            if not legacy:
                continue
            res = await self.safe_set(tier, self.codec.migrate(legacy))
            if res.success:
                migrated.extend(k for k in legacy if k not in migrated)
            else:
                logger.warning("Legacy migration on storage.%s skipped: %s", tier, res.error)
        return migrated

    async def storage_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {}
        for tier in (StorageTier.SYNC, StorageTier.LOCAL):
            limits = self.validator.limits[tier]
            entry: dict[str, Any] = {
                "available": False,
                "bytesInUse": 0,
                "itemCount": 0,
                "limits": {
                    "totalBytes": limits.total_bytes,
                    "itemBytes": limits.item_bytes,
                    "maxItems": limits.max_items,
                },
                "percentUsed": {"bytes": 0.0, "items": 0.0},
            }
            backend = self._backends.get(tier)
            if backend is not None and (tier == StorageTier.LOCAL or await self.sync_available()):
                try:
                    usage: StorageUsage = await self.validator.current_usage(tier)
                    entry["available"] = True
                    entry["bytesInUse"] = usage.bytes_in_use
                    entry["itemCount"] = usage.item_count
                    entry["percentUsed"]["bytes"] = usage.bytes_in_use / limits.total_bytes * 100
                    if limits.max_items:
                        entry["percentUsed"]["items"] = usage.item_count / limits.max_items * 100
                except Exception:
                    logger.exception("Failed to read storage.%s usage", tier)
            stats[str(tier)] = entry
        return stats
