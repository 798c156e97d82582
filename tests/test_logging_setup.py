# tests/test_logging_setup.py

from __future__ import annotations

import logging

from sau_monitor.logging_setup import MemoryLogBuffer, _ConsoleNoiseFilter


def _record(name: str, level: int, msg: str = "m") -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, msg, None, None)


def test_memory_buffer_keeps_latest_entries() -> None:
    buf = MemoryLogBuffer(capacity=2)
    for n in range(3):
        buf.handle(_record("sau_monitor.x", logging.INFO, f"msg {n}"))

    entries = buf.get_stored_logs()
    assert [e["message"] for e in entries] == ["msg 1", "msg 2"]
    assert entries[0]["level"] == "INFO"
    assert buf.get_stored_logs(0) == []


def test_console_filter_quiets_third_party_noise() -> None:
    f = _ConsoleNoiseFilter()

    assert f.filter(_record("sau_monitor.tasks.reconciler", logging.DEBUG))
    assert not f.filter(_record("sau_monitor.connectors.matrix_notifier", logging.INFO))
    assert f.filter(_record("nio.client", logging.WARNING))
    assert not f.filter(_record("urllib3", logging.WARNING))
    assert f.filter(_record("urllib3", logging.ERROR))
