"""Operator notice schema and JSONL export."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from time import time
from typing import Any, Iterable, Mapping

from .wire import encode, to_wire


class NoticeType(str, Enum):
    """Notices surfaced to the host operator."""

    BUILD_ERROR = "build_error"
    REPLAY_HALTED = "replay_halted"
    RELOADED = "reloaded"
    PERSISTENCE_FAILURE = "persistence_failure"


@dataclass(frozen=True)
class OperatorNotice:
    """Single operator-facing notice (banner or log line)."""

    notice_type: NoticeType
    message: str
    timestamp_ms: int
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Return JSON-serializable notice data."""
        return {
            "notice_type": self.notice_type.value,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "payload": to_wire(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperatorNotice":
        """Build a notice from a dictionary payload."""
        return cls(
            notice_type=NoticeType(str(data["notice_type"])),
            message=str(data.get("message", "")),
            timestamp_ms=int(data["timestamp_ms"]),
            payload=dict(data.get("payload", {})),
        )

    @classmethod
    def create(cls, notice_type: NoticeType, message: str, payload: dict[str, Any] | None = None) -> "OperatorNotice":
        """Construct a notice with the current wall-clock timestamp."""
        return cls(
            notice_type=notice_type,
            message=message,
            timestamp_ms=int(time() * 1000),
            payload=payload or {},
        )


def write_jsonl(path: str | Path, notices: Iterable[OperatorNotice]) -> None:
    """Persist notices as JSONL to disk."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as handle:
        for notice in notices:
            handle.write(encode(notice.to_dict()))
            handle.write("\n")
