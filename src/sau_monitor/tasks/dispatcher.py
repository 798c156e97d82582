# src/sau_monitor/tasks/dispatcher.py

"""
Badge and notification dispatcher.

- The badge shows the pending count ("" clears it), recomputed by the caller on every update.
- System notifications for a non-empty notify-set are rate-limited by a cooldown window.
  A notification inside the window is dropped (logged, not retried, not deferred).
- Notifier calls go through the retry executor; exhaustion is logged as a warning.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from ..core.ports import BadgeRenderer, SystemNotifier, TaskListener
from ..core.retry import RetryExecutor
from .task_models import Task

logger = logging.getLogger(__name__)

NOTIFICATION_PREFIX = "Monitor SAU"
MESSAGE_PREVIEW_CHARS = 100
FALLBACK_MAX_RETRIES = 2


class DispatchStatus(StrEnum):
    SENT = "sent"
    EMPTY = "empty"
    COOLDOWN = "cooldown"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DispatchResult:
    status: DispatchStatus
    title: str = ""
    message: str = ""
    error: str | None = None


def build_notification(tasks: Sequence[Task]) -> tuple[str, str]:
    """Title with the count, message with the joined titles cut to a short preview."""
    title = f"{NOTIFICATION_PREFIX}: {len(tasks)} Nova(s) Tarefa(s)!"
    joined = ", ".join(t.titulo or t.numero for t in tasks)
    if len(joined) > MESSAGE_PREVIEW_CHARS:
        joined = joined[:MESSAGE_PREVIEW_CHARS] + "..."
    return title, joined


class BadgeNotificationDispatcher:
    def __init__(
        self,
        notifier: SystemNotifier | None,
        *,
        badge: BadgeRenderer | None = None,
        listener: TaskListener | None = None,
        retry: RetryExecutor | None = None,
        cooldown_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._notifier = notifier
        self._badge = badge
        self._listener = listener
        self._retry = retry or RetryExecutor()
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock
        self._last_notification_at: float | None = None

    async def update_badge(self, pending_count: int) -> str:
        text = str(pending_count) if pending_count > 0 else ""
        if self._badge is not None:
            try:
                await self._badge.set_badge(text)
            except Exception:
                logger.exception("Badge update failed")
        logger.debug("Badge updated to %r", text)
        return text

    def in_cooldown(self) -> bool:
        if self._last_notification_at is None:
            return False
        return self._clock() - self._last_notification_at < self.cooldown_seconds

    async def dispatch(self, tasks: Sequence[Task]) -> DispatchResult:
        if not tasks:
            return DispatchResult(DispatchStatus.EMPTY)

        title, message = build_notification(tasks)
        if self.in_cooldown():
            logger.info("Notification for %d task(s) suppressed by cooldown", len(tasks))
            return DispatchResult(DispatchStatus.COOLDOWN, title, message)

        self._last_notification_at = self._clock()
        if self._notifier is None:
            logger.info("%s | %s", title, message)
            return DispatchResult(DispatchStatus.SENT, title, message)

        task_ids = [t.id for t in tasks]
        notifier = self._notifier
        try:
            await self._retry.run(
                lambda: notifier.notify(title=title, message=message, task_ids=task_ids),
                label="system notification",
            )
        except Exception as exc:
            logger.warning("System notification failed after retries: %r", exc)
            return DispatchResult(DispatchStatus.FAILED, title, message, error=str(exc))

        logger.info("System notification sent for %d task(s)", len(tasks))
        return DispatchResult(DispatchStatus.SENT, title, message)

    async def notify_fallback(self, title: str, message: str) -> bool:
        """Best-effort notification for login-critical failures; bypasses the cooldown."""
        if self._notifier is None:
            logger.warning("%s | %s", title, message)
            return False
        notifier = self._notifier
        try:
            await self._retry.run(
                lambda: notifier.notify(title=title, message=message),
                label="fallback notification",
                max_retries=FALLBACK_MAX_RETRIES,
            )
            return True
        except Exception:
            logger.exception("Fallback notification failed: %s", title)
            return False

    async def hand_off(self, tasks: Sequence[Task], message: str) -> None:
        """Give the task list to the UI layer. Delivery failures are logged only."""
        if self._listener is None:
            return
        try:
            await self._listener.on_tasks(list(tasks), message)
        except Exception:
            logger.exception("Task listener hand-off failed")

    async def publish(self, to_notify: Sequence[Task], pending_count: int) -> DispatchResult:
        """Badge update, system notification, then UI hand-off."""
        await self.update_badge(pending_count)
        result = await self.dispatch(to_notify)
        if to_notify:
            await self.hand_off(to_notify, f"Novas tarefas encontradas: {len(to_notify)}")
        else:
            await self.hand_off([], f"Nenhuma tarefa nova. Última verificação: {time.strftime('%H:%M:%S')}")
        return result
