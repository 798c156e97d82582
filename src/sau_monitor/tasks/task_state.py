# src/sau_monitor/tasks/task_state.py

"""
In-memory tracker state.

TrackerState owns the known task set and the three suppression maps. Invariant:
an id sits in at most one of `ignored`, `snoozed`, `opened`; suppress() is the only
way in and it evicts the id from the other two maps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from .task_models import Task, TaskState

logger = logging.getLogger(__name__)

# Current key -> key used by older releases.
LEGACY_KEYS = {
    "knownTasks": "lastKnownTasks",
    "ignored": "ignoredTasks",
    "snoozed": "snoozedTasks",
}

MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass(slots=True)
class PurgeReport:
    tasks: int = 0
    ignored: int = 0
    snoozed: int = 0
    opened: int = 0
    notification_timestamps: int = 0

    @property
    def total(self) -> int:
        return self.tasks + self.ignored + self.snoozed + self.opened + self.notification_timestamps


def _coerce_flag_map(raw: Any, key: str) -> dict[str, bool]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("Stored '%s' is %s, expected a mapping; starting empty", key, type(raw).__name__)
        return {}
    return {str(k): True for k, v in raw.items() if v}


def _coerce_ts_map(raw: Any, key: str) -> dict[str, int]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("Stored '%s' is %s, expected a mapping; starting empty", key, type(raw).__name__)
        return {}
    out: dict[str, int] = {}
    for k, v in raw.items():
        if isinstance(v, bool):
            continue
        try:
            out[str(k)] = int(v)
        except (TypeError, ValueError):
            continue
    return out


def _coerce_tasks(raw: Any) -> dict[str, Task]:
    if raw is None:
        return {}
    if not isinstance(raw, list):
        logger.warning("Stored knownTasks is %s, expected a list; starting empty", type(raw).__name__)
        return {}
    out: dict[str, Task] = {}
    skipped = 0
    for item in raw:
        task = Task.from_record(item)
        if task is None:
            skipped += 1
            continue
        out[task.id] = task
    if skipped:
        logger.warning("Skipped %d malformed stored task record(s)", skipped)
    return out


@dataclass(slots=True)
class TrackerState:
    known_tasks: dict[str, Task] = field(default_factory=dict)
    ignored: dict[str, bool] = field(default_factory=dict)
    snoozed: dict[str, int] = field(default_factory=dict)
    opened: dict[str, bool] = field(default_factory=dict)
    notification_timestamps: dict[str, int] = field(default_factory=dict)
    last_check_timestamp: int = 0

    # ---- queries (lazy snooze expiry: resolved on every read) ----

    def state_of(self, task_id: str, now: int) -> TaskState:
        if task_id not in self.known_tasks:
            return TaskState.UNKNOWN
        if task_id in self.ignored:
            return TaskState.IGNORED
        if task_id in self.opened:
            return TaskState.OPENED
        until = self.snoozed.get(task_id)
        if until is not None and until > now:
            return TaskState.SNOOZED
        return TaskState.PENDING

    def is_suppressed(self, task_id: str, now: int) -> bool:
        if task_id in self.ignored or task_id in self.opened:
            return True
        until = self.snoozed.get(task_id)
        return until is not None and until > now

    def is_pending(self, task_id: str, now: int) -> bool:
        return task_id in self.known_tasks and not self.is_suppressed(task_id, now)

    def pending_tasks(self, now: int) -> list[Task]:
        return [t for t in self.known_tasks.values() if not self.is_suppressed(t.id, now)]

    def pending_count(self, now: int) -> int:
        return sum(1 for tid in self.known_tasks if not self.is_suppressed(tid, now))

    # ---- mutations ----

    def suppress(self, task_id: str, kind: TaskState, *, until: int | None = None) -> None:
        """Move `task_id` into exactly one suppression map."""
        if kind not in (TaskState.IGNORED, TaskState.SNOOZED, TaskState.OPENED):
            raise ValueError(f"not a suppression state: {kind}")
        if kind == TaskState.SNOOZED and until is None:
            raise ValueError("snooze requires a wake-up timestamp")

        self.ignored.pop(task_id, None)
        self.snoozed.pop(task_id, None)
        self.opened.pop(task_id, None)

        if kind == TaskState.IGNORED:
            self.ignored[task_id] = True
        elif kind == TaskState.OPENED:
            self.opened[task_id] = True
        else:
            assert until is not None
            self.snoozed[task_id] = int(until)

    def clear(self) -> None:
        self.known_tasks.clear()
        self.ignored.clear()
        self.snoozed.clear()
        self.opened.clear()
        self.notification_timestamps.clear()

    def purge_expired(self, now: int, retention_days: float) -> PurgeReport:
        """
        Drop tasks whose lastNotifiedTimestamp (0 when missing) is older than the
        retention window, then every map entry whose id has no surviving task.
        """
        cutoff = now - int(retention_days * MS_PER_DAY)
        report = PurgeReport()

        for tid in [tid for tid, t in self.known_tasks.items() if (t.last_notified_timestamp or 0) < cutoff]:
            del self.known_tasks[tid]
            report.tasks += 1

        alive = self.known_tasks.keys()
        for name in ("ignored", "snoozed", "opened", "notification_timestamps"):
            mapping: dict[str, Any] = getattr(self, name)
            orphans = [k for k in mapping if k not in alive]
            for k in orphans:
                del mapping[k]
            setattr(report, name, len(orphans))

        if report.total:
            logger.info(
                "Purged %d expired task(s) and %d orphaned entr(ies)",
                report.tasks,
                report.total - report.tasks,
            )
        return report

    # ---- persistence mapping ----

    def to_storage(self) -> dict[str, Any]:
        return {
            "knownTasks": [t.to_record() for t in self.known_tasks.values()],
            "ignored": dict(self.ignored),
            "snoozed": dict(self.snoozed),
            "opened": dict(self.opened),
            "notificationTimestamps": dict(self.notification_timestamps),
        }

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> TrackerState:
        """Build state from loaded values; malformed or missing collections become empty."""

        def pick(key: str) -> Any:
            if data.get(key) is not None:
                return data[key]
            legacy = LEGACY_KEYS.get(key)
            return data.get(legacy) if legacy else None

        known_raw = pick("knownTasks")
        # Older envelopes may hold {"lastKnownTasks": [...]} instead of a bare list.
        if isinstance(known_raw, Mapping):
            known_raw = known_raw.get("knownTasks", known_raw.get("lastKnownTasks"))

        last_check = data.get("lastCheckTimestamp")
        try:
            last_check_ts = int(last_check) if last_check is not None and not isinstance(last_check, bool) else 0
        except (TypeError, ValueError):
            last_check_ts = 0

        state = cls(
            known_tasks=_coerce_tasks(known_raw),
            ignored=_coerce_flag_map(pick("ignored"), "ignored"),
            snoozed=_coerce_ts_map(pick("snoozed"), "snoozed"),
            opened=_coerce_flag_map(pick("opened"), "opened"),
            notification_timestamps=_coerce_ts_map(pick("notificationTimestamps"), "notificationTimestamps"),
            last_check_timestamp=last_check_ts,
        )
        state._repair_exclusivity()
        return state

    def _repair_exclusivity(self) -> None:
        # Stored data may predate the one-map-per-id rule; ignored wins, then opened.
        fixed = 0
        for tid in list(self.ignored):
            if self.snoozed.pop(tid, None) is not None:
                fixed += 1
            if self.opened.pop(tid, None) is not None:
                fixed += 1
        for tid in list(self.opened):
            if self.snoozed.pop(tid, None) is not None:
                fixed += 1
        if fixed:
            logger.warning("Repaired %d overlapping suppression entr(ies) on load", fixed)
