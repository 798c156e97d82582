# src/sau_monitor/tasks/reconciler.py

"""
Task reconciler.

Merges a freshly scraped batch into the tracker state and decides what to notify:
- first sighting of an id   -> known, queued for notification
- re-sighting               -> fields refreshed in place; renotified when the policy says so
- user actions              -> ignore / snooze / opened / reset

Every mutation re-persists the full collections through the store gateway before the
call returns. One asyncio.Lock serializes reconciliation and user actions, so a second
call always observes the first call's persisted state.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..storage.gateway import PersistentStoreGateway, WriteOutcome
from .task_models import Task, TaskState, now_ms
from .task_state import LEGACY_KEYS, PurgeReport, TrackerState

logger = logging.getLogger(__name__)

PERSISTED_KEYS = ("knownTasks", "ignored", "snoozed", "opened", "notificationTimestamps")
LAST_CHECK_KEY = "lastCheckTimestamp"

Clock = Callable[[], int]


@dataclass(frozen=True, slots=True)
class RenotificationPolicy:
    enabled: bool = False
    interval_minutes: float = 30.0

    @classmethod
    def from_settings(cls, settings: Any) -> RenotificationPolicy:
        return cls(
            enabled=bool(getattr(settings, "enable_renotification", False)),
            interval_minutes=float(getattr(settings, "renotification_interval_minutes", 30.0)),
        )

    def is_due(self, last_notified: int | None, now: int) -> bool:
        # Never renotify a task that was not notified through the "new" path first.
        if not self.enabled or last_notified is None:
            return False
        return now - last_notified >= self.interval_minutes * 60_000


@dataclass(slots=True)
class ReconcileResult:
    to_notify: list[Task] = field(default_factory=list)
    new_ids: list[str] = field(default_factory=list)
    renotified_ids: list[str] = field(default_factory=list)
    pending_count: int = 0
    skipped: int = 0
    outcomes: list[WriteOutcome] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return bool(self.outcomes) and self.outcomes[-1].ok


class TaskReconciler:
    def __init__(
        self,
        gateway: PersistentStoreGateway,
        *,
        renotification: RenotificationPolicy | None = None,
        retention_days: float = 30.0,
        chunk_size: int = 50,
        clock: Clock = now_ms,
    ) -> None:
        self._gateway = gateway
        self.renotification = renotification or RenotificationPolicy()
        self.retention_days = float(retention_days)
        self.chunk_size = max(1, int(chunk_size))
        self._clock = clock
        self._lock = asyncio.Lock()
        self._legacy_keys_loaded: list[str] = []
        self.state = TrackerState()

    @property
    def gateway(self) -> PersistentStoreGateway:
        return self._gateway

    # ---- lifecycle ----

    async def load(self) -> TrackerState:
        """Read persisted state once at startup. A failed read starts from empty state."""
        keys = [*PERSISTED_KEYS, LAST_CHECK_KEY, *LEGACY_KEYS.values()]
        async with self._lock:
            try:
                data = await self._gateway.load(keys)
            except Exception:
                logger.exception("Failed to load tracker state; starting empty")
                data = {}

            self.state = TrackerState.from_storage(data)
            self._legacy_keys_loaded = [
                legacy for key, legacy in LEGACY_KEYS.items() if data.get(key) is None and data.get(legacy) is not None
            ]
            logger.info(
                "Tracker state loaded: %d known, %d ignored, %d snoozed, %d opened",
                len(self.state.known_tasks),
                len(self.state.ignored),
                len(self.state.snoozed),
                len(self.state.opened),
            )
            return self.state

    async def flush(self) -> list[WriteOutcome]:
        async with self._lock:
            return await self._flush()

    async def _flush(self) -> list[WriteOutcome]:
        outcomes = await self._gateway.persist(self.state.to_storage(), cleanup=self._cleanup_for_retry)
        if self._legacy_keys_loaded and outcomes and outcomes[-1].ok:
            try:
                await self._gateway.remove(self._legacy_keys_loaded)
                logger.info("Removed legacy keys after migration: %s", self._legacy_keys_loaded)
                self._legacy_keys_loaded = []
            except Exception:
                logger.exception("Failed to remove legacy keys %s", self._legacy_keys_loaded)
        return outcomes

    async def _cleanup_for_retry(self) -> Mapping[str, Any]:
        report = self.state.purge_expired(self._clock(), self.retention_days)
        logger.warning("Quota exceeded; retention cleanup removed %d entr(ies)", report.total)
        return self.state.to_storage()

    # ---- reconciliation ----

    async def reconcile(self, batch: Iterable[Any]) -> ReconcileResult:
        """
        Apply a scraped batch.

        Tasks are applied in input order, in chunks with a cooperative yield between
        chunks. Applying the same batch twice notifies new tasks only once.
        """
        records = list(batch)
        async with self._lock:
            now = self._clock()
            result = ReconcileResult()

            for start in range(0, len(records), self.chunk_size):
                if start:
                    await asyncio.sleep(0)
                for raw in records[start : start + self.chunk_size]:
                    self._apply_one(raw, now, result)

            result.outcomes = await self._flush()
            # The flush may have purged expired tasks during quota cleanup.
            result.pending_count = self.state.pending_count(now)

            if not result.persisted:
                logger.error("Reconciled state was not persisted; keeping it in memory")
            logger.info(
                "Reconciled %d task(s): %d new, %d renotified, %d pending",
                len(records),
                len(result.new_ids),
                len(result.renotified_ids),
                result.pending_count,
            )
            return result

    def _apply_one(self, raw: Any, now: int, result: ReconcileResult) -> None:
        incoming = Task.from_record(raw)
        if incoming is None:
            result.skipped += 1
            logger.debug("Skipping task record without identity: %r", raw)
            return

        st = self.state
        known = st.known_tasks.get(incoming.id)

        if known is None:
            incoming.last_notified_timestamp = now
            st.known_tasks[incoming.id] = incoming
            if st.is_suppressed(incoming.id, now):
                logger.debug("New task %s is already suppressed; not notifying", incoming.id)
                return
            st.notification_timestamps[incoming.id] = now
            result.new_ids.append(incoming.id)
            result.to_notify.append(incoming.copy())
            return

        known.update_from(incoming)
        if st.is_suppressed(known.id, now):
            return
        if self.renotification.is_due(st.notification_timestamps.get(known.id), now):
            st.notification_timestamps[known.id] = now
            known.last_notified_timestamp = now
            result.renotified_ids.append(known.id)
            result.to_notify.append(known.copy())

    # ---- user actions (each returns the recomputed pending count) ----

    @staticmethod
    def _require_id(task_id: str) -> str:
        tid = (task_id or "").strip() if isinstance(task_id, str) else ""
        if not tid:
            raise ValueError("task_id must be a non-empty string")
        return tid

    async def _suppress(self, task_id: str, kind: TaskState, *, until: int | None = None) -> int:
        tid = self._require_id(task_id)
        async with self._lock:
            self.state.suppress(tid, kind, until=until)
            await self._flush()
            logger.info("Task %s -> %s", tid, kind)
            return self.state.pending_count(self._clock())

    async def ignore(self, task_id: str) -> int:
        return await self._suppress(task_id, TaskState.IGNORED)

    async def snooze(self, task_id: str, minutes: float) -> int:
        if not math.isfinite(minutes) or minutes < 0:
            raise ValueError("snooze minutes must be a finite number >= 0")
        until = self._clock() + int(minutes * 60_000)
        return await self._suppress(task_id, TaskState.SNOOZED, until=until)

    async def mark_opened(self, task_id: str) -> int:
        return await self._suppress(task_id, TaskState.OPENED)

    async def ignore_all(self) -> list[str]:
        """Ignore every currently pending task. Returns the ignored ids."""
        async with self._lock:
            now = self._clock()
            ids = [t.id for t in self.state.pending_tasks(now)]
            for tid in ids:
                self.state.suppress(tid, TaskState.IGNORED)
            if ids:
                await self._flush()
            logger.info("Ignored all pending tasks: %d", len(ids))
            return ids

    async def reset_all(self) -> int:
        async with self._lock:
            self.state.clear()
            await self._flush()
            logger.info("Tracker state reset")
            return 0

    async def cleanup_expired(self) -> PurgeReport:
        async with self._lock:
            report = self.state.purge_expired(self._clock(), self.retention_days)
            if report.total:
                await self._flush()
            return report

    async def record_check(self) -> int:
        """Store the time of the latest check (written raw, never wrapped)."""
        async with self._lock:
            ts = self._clock()
            self.state.last_check_timestamp = ts
            await self._gateway.persist({LAST_CHECK_KEY: ts})
            return ts

    # ---- queries ----

    def pending_count(self) -> int:
        return self.state.pending_count(self._clock())

    def pending_tasks(self) -> list[Task]:
        return [t.copy() for t in self.state.pending_tasks(self._clock())]

    def get_task(self, task_id: str) -> Task | None:
        task = self.state.known_tasks.get(task_id)
        return task.copy() if task is not None else None

    def state_of(self, task_id: str) -> TaskState:
        return self.state.state_of(task_id, self._clock())
