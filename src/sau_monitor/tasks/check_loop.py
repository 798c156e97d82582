# src/sau_monitor/tasks/check_loop.py

from __future__ import annotations

"""
Check loop.

A small polling loop that:
- records the check timestamp,
- fetches the current task list from an injected TaskSource,
- hands the batch to the monitor service (reconcile -> persist -> notify).

Scraping itself belongs to the source, not the loop.
"""

import asyncio
import logging

from ..core.ports import TaskSource
from .reconciler import ReconcileResult
from .service import TaskMonitorService
from .sources import LoginRequiredError

logger = logging.getLogger(__name__)


async def run_check_once(service: TaskMonitorService, source: TaskSource) -> ReconcileResult | None:
    """
    One check cycle. Returns None when no batch could be fetched.

    A logged-out session raises a fallback notification instead of reconciling.
    """
    try:
        await service.record_check()
    except Exception:
        logger.exception("record_check failed")

    try:
        batch = await source.fetch_tasks()
    except LoginRequiredError as exc:
        logger.warning("SAU login required: %s", exc)
        await service.notify_login_required(str(exc))
        return None
    except Exception:
        logger.exception("fetch_tasks failed")
        return None

    try:
        return await service.handle_scrape(batch)
    except Exception:
        logger.exception("handle_scrape failed")
        return None


async def run_check_loop(
        service: TaskMonitorService,
        source: TaskSource,
        *,
        interval_seconds: float = 60.0,
) -> None:
    """
    Simple polling loop.

    Every interval_seconds runs one check cycle. Failures are logged and the loop continues.
    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        await run_check_once(service, source)
        await asyncio.sleep(sleep_s)
