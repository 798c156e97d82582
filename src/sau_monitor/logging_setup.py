# src/sau_monitor/logging_setup.py

from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class _ConsoleNoiseFilter(logging.Filter):
    """
    Make interactive console usable:
    - allow sau_monitor logs
    - but keep the Matrix notifier quiet unless WARNING+
    - suppress third-party noise unless ERROR+
    - suppress Python warnings (captured as 'py.warnings') unless ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("sau_monitor."):
            if name.startswith("sau_monitor.connectors.matrix_"):
                return record.levelno >= logging.WARNING
            return True

        if name == "py.warnings":
            return record.levelno >= logging.ERROR

        if name.startswith("nio"):
            return record.levelno >= logging.WARNING

        return record.levelno >= logging.ERROR


class MemoryLogBuffer(logging.Handler):
    """
    Ring buffer of recent log records, used for the diagnostic log export.

    Each entry is a plain dict: {"timestamp", "level", "logger", "message"}.
    """

    def __init__(self, capacity: int = 1000, level: int = logging.DEBUG) -> None:
        super().__init__(level=level)
        self._entries: deque[dict[str, Any]] = deque(maxlen=max(1, int(capacity)))
        self._buf_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return
        with self._buf_lock:
            self._entries.append(entry)

    def get_stored_logs(self, limit: int | None = None) -> list[dict[str, Any]]:
        with self._buf_lock:
            items = list(self._entries)
        if limit is not None and limit >= 0:
            return items[-limit:] if limit else []
        return items

    def clear(self) -> None:
        with self._buf_lock:
            self._entries.clear()


_LOG_BUFFER: MemoryLogBuffer | None = None


def get_log_buffer() -> MemoryLogBuffer | None:
    return _LOG_BUFFER


def setup_logging(
    *,
    log_dir: str | Path = ".local/sau",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    buffer_size: int = 1000,
) -> MemoryLogBuffer:
    """
    Configure logging with:
    - Console handler: readable + filtered for interactive use
    - File handler: full logs for debugging
    - In-memory buffer: recent records for /logs export

    Call this ONCE, very early (before first logger.info).
    """
    global _LOG_BUFFER

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "sau-monitor.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    buf = MemoryLogBuffer(capacity=buffer_size)
    buf.addFilter(_ConsoleNoiseFilter())
    root.addHandler(buf)
    _LOG_BUFFER = buf

    # Route warnings.warn(...) into logging as 'py.warnings'
    logging.captureWarnings(True)

    return buf
