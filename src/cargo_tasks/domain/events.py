"""Task lifecycle notifications and their JSON envelope."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final

from cargo_tasks.domain import ids
from cargo_tasks.domain.models import JSONScalar, JSONValue

_MAX_PAYLOAD_DEPTH: Final[int] = 16
_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("event_id", "event_type", "timestamp", "payload")


class EventType(StrEnum):
    """Notifications emitted by the task orchestrator for UI collaborators."""

    TASK_STARTED = "TaskStarted"
    TASK_COMPLETED = "TaskCompleted"
    TASK_KILLED = "TaskKilled"
    TASK_FAILED = "TaskFailed"

    BUSY_CHANGED = "BusyChanged"

    DIAGNOSTICS_CLEARED = "DiagnosticsCleared"
    DIAGNOSTICS_PUBLISHED = "DiagnosticsPublished"

    USER_NOTIFIED = "UserNotified"


@dataclass(slots=True)
class TaskEvent:
    """One notification as delivered through the event bus.

    Construction normalizes its inputs: ``event_type`` may be the string value,
    ``timestamp`` may be an ISO-8601 string (``Z`` suffix accepted) and is
    stored in UTC, and ``payload`` must be plain JSON.
    """

    event_id: str
    event_type: EventType
    timestamp: datetime
    task_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        if self.task_id is not None:
            ids.validate_task_id(self.task_id)
        self.event_type = _event_type(self.event_type)
        self.timestamp = _utc(self.timestamp)
        payload = _plain_json(self.payload, "payload", 0)
        if not isinstance(payload, dict):
            raise ValueError("payload: expected a JSON object")
        self.payload = payload

    def to_dict(self) -> dict[str, JSONValue]:
        stamp = self.timestamp.isoformat(timespec="microseconds").replace("+00:00", "Z")
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": stamp,
            "task_id": self.task_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskEvent:
        missing = [name for name in _REQUIRED_FIELDS if name not in data]
        if missing:
            raise ValueError(f"TaskEvent: missing required fields: {missing}")
        return cls(
            event_id=data["event_id"],
            event_type=data["event_type"],
            timestamp=data["timestamp"],
            task_id=data.get("task_id"),
            payload=data["payload"],
        )

    @classmethod
    def from_json(cls, raw: str) -> TaskEvent:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"TaskEvent: invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("TaskEvent: JSON root must be an object")
        return cls.from_dict(data)


def _event_type(value: object) -> EventType:
    if isinstance(value, EventType):
        return value
    if isinstance(value, str) and value in EventType._value2member_map_:
        return EventType(value)
    known = ", ".join(EventType)
    raise ValueError(f"event_type: unsupported event type {value!r}; known: {known}")


def _utc(value: object) -> datetime:
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            value = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"timestamp: not an ISO-8601 datetime: {text!r}") from exc
    if not isinstance(value, datetime):
        raise ValueError(f"timestamp: expected datetime, got {type(value).__name__}")
    if value.utcoffset() is None:
        raise ValueError("timestamp: datetime must be timezone-aware")
    return value.astimezone(UTC)


def _plain_json(value: object, where: str, depth: int) -> JSONValue:
    if depth > _MAX_PAYLOAD_DEPTH:
        raise ValueError(f"{where}: nested deeper than {_MAX_PAYLOAD_DEPTH} levels")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{where}: float value must be finite")
    if value is None or isinstance(value, (str, int, float)):
        scalar: JSONScalar = value
        return scalar
    if isinstance(value, Mapping):
        result: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{where}: keys must be strings, got {key!r}")
            result[key] = _plain_json(item, f"{where}.{key}", depth + 1)
        return result
    if isinstance(value, (list, tuple)):
        return [_plain_json(item, f"{where}[{i}]", depth + 1) for i, item in enumerate(value)]
    raise ValueError(f"{where}: {type(value).__name__} is not JSON-serializable")


__all__ = ["EventType", "TaskEvent"]
