# src/sau_monitor/storage/sizing.py

from __future__ import annotations

import json
import logging
import math
from typing import Any

logger = logging.getLogger(__name__)


def to_json(value: Any) -> str:
    """Canonical compact JSON text used for both sizing and compression."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def calculate_data_size(data: Any) -> int:
    """UTF-8 byte size of the JSON form of `data`."""
    try:
        return byte_length(to_json(data))
    except (TypeError, ValueError):
        # Not JSON-serializable: size the repr so the estimate errs on the large side.
        logger.warning("calculate_data_size: value is not JSON-serializable (%s)", type(data).__name__)
        return byte_length(repr(data))


def format_bytes(n: int | float) -> str:
    if not n:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    i = min(len(units) - 1, int(math.floor(math.log(abs(n), 1024))))
    value = n / (1024**i)
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {units[i]}"
