# src/sau_monitor/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..logging_setup import MemoryLogBuffer
from ..storage.gateway import PersistentStoreGateway
from ..tasks.service import TaskMonitorService
from .ports import SystemNotifier, TaskSource


@dataclass
class AppState:
    # Store Settings on the state for easy access in command handlers.
    settings: Any

    gateway: PersistentStoreGateway
    service: TaskMonitorService
    source: TaskSource
    notifier: SystemNotifier | None = None
    log_buffer: MemoryLogBuffer | None = None
