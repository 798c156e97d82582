# src/sau_monitor/storage/quota.py

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..core.ports import StorageBackend
from .sizing import calculate_data_size, format_bytes

logger = logging.getLogger(__name__)


class StorageTier(StrEnum):
    """
    SYNC: small total capacity with per-item and item-count limits.
    LOCAL: large total capacity, no per-item or count limits.
    """

    SYNC = "sync"
    LOCAL = "local"


@dataclass(frozen=True, slots=True)
class QuotaLimits:
    total_bytes: int
    item_bytes: int | None = None
    max_items: int | None = None


DEFAULT_LIMITS: dict[StorageTier, QuotaLimits] = {
    StorageTier.SYNC: QuotaLimits(total_bytes=100 * 1024, item_bytes=8 * 1024, max_items=512),
    StorageTier.LOCAL: QuotaLimits(total_bytes=5 * 1024 * 1024),
}


def _entry_size(key: str, value: Any) -> int:
    """Bytes of one `"key":value` entry, without the enclosing braces."""
    return calculate_data_size({key: value}) - 2


def limits_from_settings(settings: Any) -> dict[StorageTier, QuotaLimits]:
    return {
        StorageTier.SYNC: QuotaLimits(
            total_bytes=int(getattr(settings, "sync_total_bytes", 100 * 1024)),
            item_bytes=int(getattr(settings, "sync_item_bytes", 8 * 1024)),
            max_items=int(getattr(settings, "sync_max_items", 512)),
        ),
        StorageTier.LOCAL: QuotaLimits(
            total_bytes=int(getattr(settings, "local_total_bytes", 5 * 1024 * 1024)),
        ),
    }


@dataclass(slots=True)
class StorageUsage:
    """
    Current usage of a tier.

    `items` holds the stored values when they are known; only then can the validator
    credit back the size of keys that a write overwrites.
    """

    bytes_in_use: int
    item_count: int
    items: Mapping[str, Any] | None = None

    @classmethod
    def of(cls, items: Mapping[str, Any]) -> StorageUsage:
        return cls(bytes_in_use=calculate_data_size(dict(items)), item_count=len(items), items=items)


@dataclass(frozen=True, slots=True)
class QuotaViolation:
    kind: str  # totalSize | itemSize | itemCount
    current: int
    limit: int
    key: str | None = None

    @property
    def exceeded(self) -> int:
        return self.current - self.limit

    def describe(self) -> str:
        if self.kind == "totalSize":
            return f"total size would exceed limit ({format_bytes(self.current)} > {format_bytes(self.limit)})"
        if self.kind == "itemSize":
            return (
                f"item '{self.key}' exceeds per-item limit "
                f"({format_bytes(self.current)} > {format_bytes(self.limit)})"
            )
        if self.kind == "itemCount":
            return f"item count would exceed limit ({self.current} > {self.limit})"
        return f"validation failed: {self.kind}"


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    reason: str | None = None
    violations: list[QuotaViolation] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def quota_exceeded(self) -> bool:
        return bool(self.violations)


class QuotaValidator:
    """Checks a prospective write against a tier's quota before anything is written."""

    def __init__(
        self,
        backends: Mapping[StorageTier, StorageBackend],
        limits: Mapping[StorageTier, QuotaLimits] | None = None,
    ) -> None:
        self._backends = backends
        self.limits: dict[StorageTier, QuotaLimits] = dict(DEFAULT_LIMITS)
        if limits:
            self.limits.update(limits)

    async def current_usage(self, tier: StorageTier) -> StorageUsage:
        backend = self._backends[tier]
        return StorageUsage.of(await backend.get(None))

    async def validate(
        self,
        tier: StorageTier,
        proposed: Mapping[str, Any],
        current_usage: StorageUsage | None = None,
    ) -> ValidationResult:
        try:
            limits = self.limits.get(tier)
            if limits is None:
                return ValidationResult(valid=False, reason=f"invalid storage tier: {tier}")

            new_size = calculate_data_size(dict(proposed))
            usage = current_usage if current_usage is not None else await self.current_usage(tier)

            estimated_size = usage.bytes_in_use + new_size
            estimated_count = usage.item_count + len(proposed)

            # Overwrites replace existing bytes; without per-key data keep the overestimate.
            if usage.items is not None:
                for key in proposed:
                    if key in usage.items:
                        estimated_size -= _entry_size(key, usage.items[key])
                        estimated_count -= 1

            violations: list[QuotaViolation] = []

            if estimated_size > limits.total_bytes:
                violations.append(QuotaViolation("totalSize", estimated_size, limits.total_bytes))

            if limits.item_bytes:
                for key, value in proposed.items():
                    item_size = calculate_data_size({key: value})
                    if item_size > limits.item_bytes:
                        violations.append(QuotaViolation("itemSize", item_size, limits.item_bytes, key=key))

            if limits.max_items and estimated_count > limits.max_items:
                violations.append(QuotaViolation("itemCount", estimated_count, limits.max_items))

            details = {
                "tier": str(tier),
                "currentBytes": usage.bytes_in_use,
                "currentItems": usage.item_count,
                "newDataSize": new_size,
                "estimatedNewSize": estimated_size,
                "estimatedItemCount": estimated_count,
                "limits": {
                    "totalBytes": limits.total_bytes,
                    "itemBytes": limits.item_bytes,
                    "maxItems": limits.max_items,
                },
                "violations": [
                    {"type": v.kind, "current": v.current, "limit": v.limit, "key": v.key, "exceeded": v.exceeded}
                    for v in violations
                ],
            }

            logger.debug(
                "Validation storage.%s valid=%s new=%s estimated=%s limit=%s violations=%d",
                tier,
                not violations,
                format_bytes(new_size),
                format_bytes(estimated_size),
                format_bytes(limits.total_bytes),
                len(violations),
            )

            if violations:
                return ValidationResult(
                    valid=False,
                    reason="; ".join(v.describe() for v in violations),
                    violations=violations,
                    details=details,
                )
            return ValidationResult(valid=True, details=details)
        except Exception as exc:
            logger.exception("Storage validation failed for tier %s", tier)
            return ValidationResult(valid=False, reason=f"internal error: {exc}", details={"error": str(exc)})
