# src/sau_monitor/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires storage tiers, gateway, reconciler, dispatcher and connectors into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.console_connector import (
    ConsoleBadge,
    ConsoleNotifier,
    ConsoleTaskListener,
    LoggingTabOpener,
)
from ..connectors.matrix_notifier import MatrixNotifier
from ..core.ports import StorageBackend, SystemNotifier
from ..core.retry import RetryExecutor, RetryPolicy
from ..core.state import AppState
from ..logging_setup import MemoryLogBuffer
from ..storage.backends import SqliteBackend
from ..storage.codec import EnvelopeCodec
from ..storage.gateway import PersistentStoreGateway
from ..storage.quota import QuotaValidator, StorageTier, limits_from_settings
from ..tasks.dispatcher import BadgeNotificationDispatcher
from ..tasks.reconciler import RenotificationPolicy, TaskReconciler
from ..tasks.service import TaskMonitorService
from ..tasks.sources import JsonFileTaskSource

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.local_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.sync_db_path.parent.mkdir(parents=True, exist_ok=True)
    if settings.matrix_enabled:
        settings.matrix_store_path.mkdir(parents=True, exist_ok=True)


def build_gateway(settings) -> PersistentStoreGateway:
    backends: dict[StorageTier, StorageBackend] = {StorageTier.LOCAL: SqliteBackend(settings.local_db_path)}
    if settings.sync_enabled:
        backends[StorageTier.SYNC] = SqliteBackend(settings.sync_db_path)

    key_tiers = {key: StorageTier.SYNC for key in settings.sync_keys} if settings.sync_enabled else {}

    return PersistentStoreGateway(
        backends,
        codec=EnvelopeCodec(enabled=settings.compression_enabled, min_size=settings.compression_min_size),
        validator=QuotaValidator(backends, limits_from_settings(settings)),
        key_tiers=key_tiers,
    )


def _build_notifier(settings) -> SystemNotifier:
    if settings.matrix_enabled:
        return MatrixNotifier(settings)
    return ConsoleNotifier()


def create_initial_state(*, settings=None, log_buffer: MemoryLogBuffer | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    gateway = build_gateway(settings)
    retry = RetryExecutor(RetryPolicy.from_settings(settings))
    notifier = _build_notifier(settings)

    reconciler = TaskReconciler(
        gateway,
        renotification=RenotificationPolicy.from_settings(settings),
        retention_days=settings.retention_days,
        chunk_size=settings.reconcile_chunk_size,
    )
    dispatcher = BadgeNotificationDispatcher(
        notifier,
        badge=ConsoleBadge(),
        listener=ConsoleTaskListener(),
        retry=retry,
        cooldown_seconds=settings.notification_cooldown_seconds,
    )
    service = TaskMonitorService(
        reconciler,
        dispatcher,
        tab_opener=LoggingTabOpener(),
        retry=retry,
        default_snooze_minutes=settings.default_snooze_minutes,
    )

    return AppState(
        settings=settings,
        gateway=gateway,
        service=service,
        source=JsonFileTaskSource(settings.scrape_source_path),
        notifier=notifier,
        log_buffer=log_buffer,
    )
