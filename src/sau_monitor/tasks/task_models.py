# src/sau_monitor/tasks/task_models.py

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Mapping

# Scraped fields refreshed on every observation (everything except id and lastNotifiedTimestamp).
MUTABLE_FIELDS = (
    "numero",
    "titulo",
    "link",
    "data_envio",
    "posicao",
    "solicitante",
    "unidade",
    "descricao",
    "enderecos",
)

_RECORD_KEYS = {
    "numero": "numero",
    "titulo": "titulo",
    "link": "link",
    "data_envio": "dataEnvio",
    "posicao": "posicao",
    "solicitante": "solicitante",
    "unidade": "unidade",
    "descricao": "descricao",
    "enderecos": "enderecos",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def make_task_id(numero: Any, data_envio: Any) -> str:
    """Stable task id: the same portal task always yields the same id."""
    return f"{str(numero).strip()}-{str(data_envio).strip()}"


class TaskState(StrEnum):
    """
    Per-id lifecycle state.

    SNOOZED falls back to PENDING lazily once the wake-up time has passed.
    """

    UNKNOWN = "unknown"
    PENDING = "pending"
    IGNORED = "ignored"
    SNOOZED = "snoozed"
    OPENED = "opened"


def _str(raw: Any) -> str:
    if raw is None:
        return ""
    return raw if isinstance(raw, str) else str(raw)


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [_str(x) for x in raw if x is not None]


def _opt_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class Task:
    id: str
    numero: str
    titulo: str = ""
    link: str = ""
    data_envio: str = ""
    posicao: str = ""
    solicitante: str = ""
    unidade: str = ""
    descricao: str = ""
    enderecos: list[str] = field(default_factory=list)

    last_notified_timestamp: int | None = None

    @classmethod
    def from_record(cls, raw: Any) -> Task | None:
        """
        Build a Task from a scraped or persisted record (camelCase keys).

        Returns None when the record has no usable identity.
        """
        if not isinstance(raw, Mapping):
            return None

        numero = _str(raw.get("numero")).strip()
        data_envio = _str(raw.get("dataEnvio")).strip()
        task_id = _str(raw.get("id")).strip()
        if not task_id:
            if not numero:
                return None
            task_id = make_task_id(numero, data_envio)

        return cls(
            id=task_id,
            numero=numero,
            titulo=_str(raw.get("titulo")),
            link=_str(raw.get("link")),
            data_envio=data_envio,
            posicao=_str(raw.get("posicao")),
            solicitante=_str(raw.get("solicitante")),
            unidade=_str(raw.get("unidade")),
            descricao=_str(raw.get("descricao")),
            enderecos=_str_list(raw.get("enderecos")),
            last_notified_timestamp=_opt_int(raw.get("lastNotifiedTimestamp")),
        )

    def to_record(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id}
        for attr, key in _RECORD_KEYS.items():
            value = getattr(self, attr)
            out[key] = list(value) if isinstance(value, list) else value
        if self.last_notified_timestamp is not None:
            out["lastNotifiedTimestamp"] = self.last_notified_timestamp
        return out

    def update_from(self, other: Task) -> None:
        """Refresh scraped fields in place; id and lastNotifiedTimestamp are kept."""
        for attr in MUTABLE_FIELDS:
            value = getattr(other, attr)
            setattr(self, attr, list(value) if isinstance(value, list) else value)

    def copy(self) -> Task:
        return replace(self, enderecos=list(self.enderecos))
