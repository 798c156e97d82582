# src/sau_monitor/tasks/sources.py

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from ..core.ports import TaskRecord

logger = logging.getLogger(__name__)


class LoginRequiredError(RuntimeError):
    """The portal session is logged out; scraping cannot proceed until the user logs in."""


class JsonFileTaskSource:
    """
    Task source backed by a JSON file written by the external scraper.

    Accepted shapes:
    - a list of task records
    - {"tasks": [...]} with an optional "loggedIn": false marker
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_sync(self) -> Any:
        if not self._path.exists():
            return None
        return json.loads(self._path.read_text("utf-8"))

    async def fetch_tasks(self) -> list[TaskRecord]:
        data = await asyncio.to_thread(self._read_sync)
        if data is None:
            logger.debug("No scrape output at %s yet", self._path)
            return []

        if isinstance(data, dict):
            if data.get("loggedIn") is False:
                raise LoginRequiredError(str(data.get("message") or "SAU session is logged out"))
            data = data.get("tasks", [])

        if not isinstance(data, list):
            logger.warning("Scrape output at %s is %s, expected a list", self._path, type(data).__name__)
            return []
        return [item for item in data if isinstance(item, dict)]
