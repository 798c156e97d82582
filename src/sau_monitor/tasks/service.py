# src/sau_monitor/tasks/service.py

"""
Monitor service: the reconciler and the dispatcher behind one facade.

Connectors and CLI commands talk to this class only. Each user action returns the
recomputed pending count and refreshes the badge.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from ..core.ports import TabOpener
from ..core.retry import RetryExecutor
from .dispatcher import BadgeNotificationDispatcher, DispatchResult
from .reconciler import ReconcileResult, TaskReconciler
from .task_models import Task

logger = logging.getLogger(__name__)

LOGIN_REQUIRED_TITLE = "Monitor SAU: Login Necessário"


class TaskMonitorService:
    def __init__(
        self,
        reconciler: TaskReconciler,
        dispatcher: BadgeNotificationDispatcher,
        *,
        tab_opener: TabOpener | None = None,
        retry: RetryExecutor | None = None,
        default_snooze_minutes: float = 15.0,
    ) -> None:
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self._tab_opener = tab_opener
        self._retry = retry or RetryExecutor()
        self.default_snooze_minutes = float(default_snooze_minutes)
        self.last_dispatch: DispatchResult | None = None

    async def start(self) -> int:
        await self.reconciler.load()
        count = self.reconciler.pending_count()
        await self.dispatcher.update_badge(count)
        return count

    async def handle_scrape(self, batch: Iterable[Any]) -> ReconcileResult:
        result = await self.reconciler.reconcile(batch)
        self.last_dispatch = await self.dispatcher.publish(result.to_notify, result.pending_count)
        return result

    # ---- user actions ----

    async def ignore(self, task_id: str) -> int:
        return await self._refresh(await self.reconciler.ignore(task_id))

    async def snooze(self, task_id: str, minutes: float | None = None) -> int:
        if minutes is None:
            minutes = self.default_snooze_minutes
        return await self._refresh(await self.reconciler.snooze(task_id, minutes))

    async def mark_opened(self, task_id: str) -> int:
        return await self._refresh(await self.reconciler.mark_opened(task_id))

    async def ignore_all(self) -> list[str]:
        ids = await self.reconciler.ignore_all()
        await self._refresh(self.reconciler.pending_count())
        await self.dispatcher.hand_off([], "")
        return ids

    async def reset_all(self) -> int:
        return await self._refresh(await self.reconciler.reset_all())

    async def _refresh(self, pending: int) -> int:
        await self.dispatcher.update_badge(pending)
        return pending

    # ---- tabs ----

    async def open_task(self, task_id: str) -> bool:
        """Open the task link (with retries), then mark the task as opened."""
        task = self.reconciler.get_task(task_id)
        if task is None:
            logger.warning("open_task: unknown task %s", task_id)
            return False
        if not task.link:
            logger.warning("open_task: task %s has no link", task_id)
            return False
        if self._tab_opener is None:
            logger.warning("open_task: no tab opener configured")
            return False

        opener = self._tab_opener
        try:
            await self._retry.run(lambda: opener.open_url(task.link), label=f"open tab for {task.id}")
        except Exception as exc:
            logger.warning("Could not open task %s: %r", task.id, exc)
            return False

        await self.mark_opened(task.id)
        return True

    async def open_all_pending(self) -> list[str]:
        opened: list[str] = []
        for task in self.reconciler.pending_tasks():
            if await self.open_task(task.id):
                opened.append(task.id)
        logger.info("Opened %d pending task(s)", len(opened))
        return opened

    # ---- checks / queries ----

    async def record_check(self) -> int:
        return await self.reconciler.record_check()

    async def notify_login_required(self, reason: str) -> bool:
        return await self.dispatcher.notify_fallback(LOGIN_REQUIRED_TITLE, reason)

    async def cleanup_expired(self) -> int:
        report = await self.reconciler.cleanup_expired()
        await self._refresh(self.reconciler.pending_count())
        return report.total

    async def storage_stats(self) -> dict[str, Any]:
        return await self.reconciler.gateway.storage_stats()

    def latest_tasks(self) -> list[Task]:
        return self.reconciler.pending_tasks()

    def pending_count(self) -> int:
        return self.reconciler.pending_count()

    @property
    def last_check_timestamp(self) -> int:
        return self.reconciler.state.last_check_timestamp
