# src/sau_monitor/storage/codec.py

"""
Compression codec for persisted collections.

encode() runs two passes:
1. Field optimization (lossy, applied unconditionally to task-like records):
   long text fields are truncated, empty optional fields are dropped, and pt-BR date
   strings become epoch-ms integers when that conversion restores to the same string.
2. Compression (lossless): the compact JSON text goes through the configured
   Compressor when it is large enough and the saving is worth it.

decode() reverses both, so decode(encode(x)) == normalize(x), and
decode(encode(normalize(x))) == normalize(x) exactly.
"""

from __future__ import annotations

import base64
import calendar
import json
import logging
import zlib
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..core.ports import Compressor
from .sizing import byte_length, to_json

logger = logging.getLogger(__name__)

COMPRESSION_VERSION = 1
MIN_SIZE_FOR_COMPRESSION = 1024
# Compressed form is kept only when it is more than 10% smaller.
MIN_SIZE_REDUCTION = 0.10

TRUNCATE_LIMITS: dict[str, int] = {
    "descricao": 500,
    "titulo": 150,
    "unidade": 80,
}
REMOVABLE_IF_EMPTY: dict[str, Any] = {
    "enderecos": list,
    "solicitante": str,
}
DATE_FIELDS = ("dataEnvio",)
TASK_LIST_KEYS = ("knownTasks", "lastKnownTasks")


# ---- compressors ----


class ZlibCompressor:
    """DEFLATE (LZ77 back-references + Huffman) over UTF-8, base64 for a text-safe payload."""

    name = "zlib"

    def __init__(self, level: int = 9) -> None:
        self.level = level

    def compress(self, text: str) -> str:
        return base64.b64encode(zlib.compress(text.encode("utf-8"), self.level)).decode("ascii")

    def decompress(self, packed: str) -> str:
        return zlib.decompress(base64.b64decode(packed.encode("ascii"))).decode("utf-8")


_COMPRESSORS: dict[str, type] = {ZlibCompressor.name: ZlibCompressor}


def register_compressor(name: str, factory: type) -> None:
    _COMPRESSORS[name] = factory


# ---- field optimization ----


def _format_pt_br(ms: int) -> str:
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    if dt.second:
        return dt.strftime("%d/%m/%Y %H:%M:%S")
    if dt.hour or dt.minute:
        return dt.strftime("%d/%m/%Y %H:%M")
    return dt.strftime("%d/%m/%Y")


def _parse_pt_br(text: str) -> int | None:
    for fmt in ("%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", "%d/%m/%Y"):
        try:
            dt = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return calendar.timegm(dt.timetuple()) * 1000
    return None


def _compact_date(value: str) -> str | int:
    ms = _parse_pt_br(value.strip())
    # Only convert when the integer restores to the identical string.
    if ms is None or _format_pt_br(ms) != value:
        return value
    return ms


def is_task_like(value: Any) -> bool:
    return isinstance(value, dict) and "numero" in value


def optimize_task(task: dict[str, Any]) -> dict[str, Any]:
    if not is_task_like(task):
        return task
    out = dict(task)

    for field_name, limit in TRUNCATE_LIMITS.items():
        v = out.get(field_name)
        if isinstance(v, str) and len(v) > limit:
            out[field_name] = v[:limit]

    for field_name in REMOVABLE_IF_EMPTY:
        if field_name in out and out[field_name] in (None, "", []):
            del out[field_name]

    for field_name in DATE_FIELDS:
        v = out.get(field_name)
        if isinstance(v, str) and v:
            out[field_name] = _compact_date(v)

    return out


def restore_task(task: dict[str, Any]) -> dict[str, Any]:
    if not is_task_like(task):
        return task
    out = dict(task)

    for field_name in DATE_FIELDS:
        v = out.get(field_name)
        if isinstance(v, int) and not isinstance(v, bool):
            out[field_name] = _format_pt_br(v)

    for field_name, factory in REMOVABLE_IF_EMPTY.items():
        if out.get(field_name) is None:
            out[field_name] = factory()

    return out


def _map_tasks(value: Any, fn) -> Any:
    if isinstance(value, list):
        return [fn(item) if isinstance(item, dict) else item for item in value]
    if isinstance(value, dict):
        for key in TASK_LIST_KEYS:
            if isinstance(value.get(key), list):
                return {**value, key: _map_tasks(value[key], fn)}
    return value


def optimize_value(value: Any) -> Any:
    return _map_tasks(value, optimize_task)


def restore_value(value: Any) -> Any:
    return _map_tasks(value, restore_task)


def normalize(value: Any) -> Any:
    """The value as it comes back from a round trip (the lossy pre-step applied)."""
    return restore_value(optimize_value(value))


# ---- envelope ----


@dataclass(slots=True)
class CompressionEnvelope:
    data: Any
    compressed: bool
    original_size: int = 0
    compressed_size: int = 0
    compression_ratio: float = 1.0
    version: int | None = None
    algorithm: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "data": self.data,
            "compressed": self.compressed,
            "originalSize": self.original_size,
            "compressedSize": self.compressed_size,
            "compressionRatio": self.compression_ratio,
        }
        if self.version is not None:
            out["version"] = self.version
        if self.algorithm is not None:
            out["algorithm"] = self.algorithm
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> CompressionEnvelope:
        return cls(
            data=raw.get("data"),
            compressed=bool(raw.get("compressed")),
            original_size=int(raw.get("originalSize") or 0),
            compressed_size=int(raw.get("compressedSize") or 0),
            compression_ratio=float(raw.get("compressionRatio") or 1.0),
            version=raw.get("version"),
            algorithm=raw.get("algorithm"),
            error=raw.get("error"),
        )


def is_envelope(value: Any) -> bool:
    if isinstance(value, CompressionEnvelope):
        return True
    return isinstance(value, Mapping) and "compressed" in value and "data" in value


def compression_stats(value: Any) -> dict[str, Any]:
    if not is_envelope(value):
        return {
            "compressed": False,
            "originalSize": 0,
            "compressedSize": 0,
            "compressionRatio": 1.0,
            "spaceSaved": 0,
        }
    env = value if isinstance(value, CompressionEnvelope) else CompressionEnvelope.from_dict(value)
    return {
        "compressed": env.compressed,
        "originalSize": env.original_size,
        "compressedSize": env.compressed_size,
        "compressionRatio": env.compression_ratio,
        "spaceSaved": env.original_size - env.compressed_size,
    }


class EnvelopeCodec:
    """
    encode(value) -> CompressionEnvelope, decode(envelope) -> value.

    Neither method raises: encode falls back to an uncompressed envelope around the
    original value (with `error` set); decode falls back to the raw payload.
    """

    def __init__(
        self,
        compressor: Compressor | None = None,
        *,
        enabled: bool = True,
        min_size: int = MIN_SIZE_FOR_COMPRESSION,
        min_reduction: float = MIN_SIZE_REDUCTION,
    ) -> None:
        self.compressor: Compressor = compressor or ZlibCompressor()
        self.enabled = enabled
        self.min_size = int(min_size)
        self.min_reduction = float(min_reduction)

    def encode(self, value: Any) -> CompressionEnvelope:
        try:
            optimized = optimize_value(value)
            text = to_json(optimized)
            size = byte_length(text)

            if not self.enabled or size < self.min_size:
                return CompressionEnvelope(data=optimized, compressed=False, original_size=size, compressed_size=size)

            packed = self.compressor.compress(text)
            packed_size = byte_length(packed)

            if packed_size < size * (1.0 - self.min_reduction):
                ratio = size / packed_size if packed_size else 1.0
                logger.debug(
                    "Compression applied: %d -> %d bytes (%.1f%% saved)",
                    size,
                    packed_size,
                    (1 - packed_size / size) * 100,
                )
                return CompressionEnvelope(
                    data=packed,
                    compressed=True,
                    original_size=size,
                    compressed_size=packed_size,
                    compression_ratio=ratio,
                    version=COMPRESSION_VERSION,
                    algorithm=self.compressor.name,
                )

            return CompressionEnvelope(data=optimized, compressed=False, original_size=size, compressed_size=size)
        except Exception as exc:
            logger.exception("Compression failed; storing the original value uncompressed.")
            return CompressionEnvelope(data=value, compressed=False, error=str(exc) or type(exc).__name__)

    def _compressor_for(self, algorithm: str | None) -> Compressor:
        if not algorithm or algorithm == self.compressor.name:
            return self.compressor
        factory = _COMPRESSORS.get(algorithm)
        if factory is None:
            raise ValueError(f"unknown compression algorithm: {algorithm}")
        return factory()

    def decode(self, value: Any) -> Any:
        if not is_envelope(value):
            # Legacy/raw value stored before envelopes existed.
            return value

        env = value if isinstance(value, CompressionEnvelope) else CompressionEnvelope.from_dict(value)
        try:
            if not env.compressed:
                return restore_value(env.data)

            if env.version is not None and int(env.version) > COMPRESSION_VERSION:
                logger.warning("Envelope version %s is newer than supported %s", env.version, COMPRESSION_VERSION)

            if not isinstance(env.data, str):
                raise TypeError(f"compressed payload must be str, got {type(env.data).__name__}")
            text = self._compressor_for(env.algorithm).decompress(env.data)
            return restore_value(json.loads(text))
        except Exception:
            logger.exception("Decompression failed; returning the raw payload.")
            return env.data if env.data is not None else value

    def migrate(self, values: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        """Wrap raw (pre-envelope) values; values already in envelope form are kept."""
        out: dict[str, dict[str, Any]] = {}
        total_before = 0
        total_after = 0
        for key, value in values.items():
            if is_envelope(value):
                out[key] = value.to_dict() if isinstance(value, CompressionEnvelope) else dict(value)
                continue
            env = self.encode(value)
            out[key] = env.to_dict()
            total_before += env.original_size
            total_after += env.compressed_size or env.original_size
            logger.debug("Migrated %s: %d -> %d bytes", key, env.original_size, env.compressed_size)
        if total_before:
            logger.info("Migration finished: %d -> %d bytes", total_before, total_after)
        return out
