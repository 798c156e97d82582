# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from sau_monitor.core.retry import RetryExecutor, RetryPolicy
from sau_monitor.core.state import AppState
from sau_monitor.logging_setup import MemoryLogBuffer
from sau_monitor.storage.backends import MemoryBackend
from sau_monitor.storage.gateway import PersistentStoreGateway
from sau_monitor.storage.quota import StorageTier
from sau_monitor.tasks.dispatcher import BadgeNotificationDispatcher
from sau_monitor.tasks.reconciler import RenotificationPolicy, TaskReconciler
from sau_monitor.tasks.service import TaskMonitorService

from .fakes import (
    FakeBadge,
    FakeClock,
    FakeListener,
    FakeMonotonic,
    FakeNotifier,
    FakeTabOpener,
    FakeTaskSource,
    RecordingSleep,
)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="sau-test",
        data_dir=tmp_path,
        local_db_path=tmp_path / "local.sqlite3",
        sync_db_path=tmp_path / "sync.sqlite3",
        scrape_source_path=tmp_path / "scraped_tasks.json",
        sync_enabled=True,
        sync_keys=[],
        sync_total_bytes=100 * 1024,
        sync_item_bytes=8 * 1024,
        sync_max_items=512,
        local_total_bytes=5 * 1024 * 1024,
        compression_enabled=True,
        compression_min_size=1024,
        check_interval_seconds=60.0,
        reconcile_chunk_size=50,
        retention_days=30.0,
        default_snooze_minutes=15.0,
        enable_renotification=False,
        renotification_interval_minutes=30.0,
        notification_cooldown_seconds=15.0,
        max_retries=3,
        base_retry_delay_ms=1000,
        max_retry_delay_ms=10000,
        operation_timeout_seconds=0,
        matrix_enabled=False,
        matrix_store_path=tmp_path / "matrix_store",
        log_buffer_size=100,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def local_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def gateway(local_backend: MemoryBackend) -> PersistentStoreGateway:
    return PersistentStoreGateway({StorageTier.LOCAL: local_backend})


@pytest.fixture()
def reconciler(gateway: PersistentStoreGateway, clock: FakeClock) -> TaskReconciler:
    return TaskReconciler(gateway, clock=clock, chunk_size=50)


@pytest.fixture()
def renotifying_reconciler(gateway: PersistentStoreGateway, clock: FakeClock) -> TaskReconciler:
    return TaskReconciler(
        gateway,
        renotification=RenotificationPolicy(enabled=True, interval_minutes=30),
        clock=clock,
    )


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def badge() -> FakeBadge:
    return FakeBadge()


@pytest.fixture()
def listener() -> FakeListener:
    return FakeListener()


@pytest.fixture()
def tab_opener() -> FakeTabOpener:
    return FakeTabOpener()


@pytest.fixture()
def retry(sleep: RecordingSleep) -> RetryExecutor:
    return RetryExecutor(RetryPolicy(), sleep=sleep)


@pytest.fixture()
def dispatcher(
    notifier: FakeNotifier,
    badge: FakeBadge,
    listener: FakeListener,
    retry: RetryExecutor,
) -> BadgeNotificationDispatcher:
    return BadgeNotificationDispatcher(
        notifier,
        badge=badge,
        listener=listener,
        retry=retry,
        cooldown_seconds=15,
        clock=FakeMonotonic(),
    )


@pytest.fixture()
def service(
    reconciler: TaskReconciler,
    dispatcher: BadgeNotificationDispatcher,
    tab_opener: FakeTabOpener,
    retry: RetryExecutor,
) -> TaskMonitorService:
    return TaskMonitorService(reconciler, dispatcher, tab_opener=tab_opener, retry=retry)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    gateway: PersistentStoreGateway,
    service: TaskMonitorService,
    notifier: FakeNotifier,
) -> AppState:
    """AppState wired with deterministic fakes and in-memory storage."""
    return AppState(
        settings=settings,
        gateway=gateway,
        service=service,
        source=FakeTaskSource(),
        notifier=notifier,
        log_buffer=MemoryLogBuffer(capacity=50),
    )
