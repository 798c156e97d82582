# src/sau_monitor/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps storage backends, notification sinks and the scraper swappable and makes
testing easier.
"""

from typing import Any, Awaitable, Iterable, Mapping, Protocol, Sequence

TaskRecord = dict[str, Any]
# Scraped task as handed over by the external scraper:
# {"numero": "...", "titulo": "...", "dataEnvio": "...", ...}.


class StorageBackend(Protocol):
    """
    Key/value persistence tier (async).

    get(None) returns every stored item. set() must apply the whole batch or nothing.
    """

    def get(self, keys: Iterable[str] | None = None) -> Awaitable[dict[str, Any]]: ...
    def set(self, items: Mapping[str, Any]) -> Awaitable[None]: ...
    def remove(self, keys: Iterable[str]) -> Awaitable[None]: ...
    def clear(self) -> Awaitable[None]: ...
    def bytes_in_use(self) -> Awaitable[int]: ...
    def is_available(self) -> Awaitable[bool]: ...


class Compressor(Protocol):
    """Reversible text-to-text compression used inside a CompressionEnvelope."""

    name: str

    def compress(self, text: str) -> str: ...
    def decompress(self, packed: str) -> str: ...


class SystemNotifier(Protocol):
    """
    System-level notification sink (desktop popup, chat room, ...).

    Raising signals a transient failure; the dispatcher retries it.
    """

    def notify(self, *, title: str, message: str, task_ids: Sequence[str] = ()) -> Awaitable[None]: ...


class BadgeRenderer(Protocol):
    """Renders the pending-count badge. Empty text clears it."""

    def set_badge(self, text: str) -> Awaitable[None]: ...


class TaskListener(Protocol):
    """UI hand-off: receives the task list to show (popup / in-page notification)."""

    def on_tasks(self, tasks: Sequence[Any], message: str = "") -> Awaitable[None]: ...


class TabOpener(Protocol):
    """Opens a task link for the user (browser tab)."""

    def open_url(self, url: str) -> Awaitable[None]: ...


class TaskSource(Protocol):
    """External scraper: returns the current task list of the portal."""

    def fetch_tasks(self) -> Awaitable[list[TaskRecord]]: ...
