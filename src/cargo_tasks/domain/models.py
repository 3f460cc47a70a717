"""Dataclass domain models for tasks, output lines, and file diagnostics."""

from __future__ import annotations

import os.path
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from pathlib import Path

from cargo_tasks.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class StreamSource(StrEnum):
    STDOUT = "stdout"
    STDERR = "stderr"


class TaskState(StrEnum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    KILLED = "killed"


class Severity(IntEnum):
    """Diagnostic severity using editor ordering (lower is more severe)."""

    ERROR = 0
    WARNING = 1
    INFORMATION = 2

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True, order=True)
class Position:
    """Zero-based line/character position."""

    line: int
    character: int

    def __post_init__(self) -> None:
        if self.line < 0 or self.character < 0:
            raise ValueError(f"Position must be non-negative, got ({self.line}, {self.character})")


@dataclass(frozen=True, slots=True)
class Range:
    """Zero-based half-open range ``[start, end)``."""

    start: Position
    end: Position

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Range end {self.end} precedes start {self.start}")

    @classmethod
    def of(cls, start_line: int, start_character: int, end_line: int, end_character: int) -> Range:
        return cls(Position(start_line, start_character), Position(end_line, end_character))

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "start": {"line": self.start.line, "character": self.start.character},
            "end": {"line": self.end.line, "character": self.end.character},
        }


@dataclass(frozen=True, slots=True)
class OutputLine:
    source: StreamSource
    text: str


@dataclass(frozen=True, slots=True)
class RelatedDiagnostic:
    """Nested note, suggestion, or secondary span attached to a parent diagnostic."""

    file_path: str
    range: Range
    message: str
    severity: Severity = Severity.INFORMATION

    def with_file_path(self, file_path: str) -> RelatedDiagnostic:
        return RelatedDiagnostic(
            file_path=file_path, range=self.range, message=self.message, severity=self.severity
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "file_path": self.file_path,
            "range": self.range.to_dict(),
            "message": self.message,
            "severity": self.severity.label,
        }


@dataclass(frozen=True, slots=True)
class FileDiagnostic:
    """One normalized, file-scoped diagnostic extracted from a tool message."""

    file_path: str
    range: Range
    severity: Severity
    message: str
    code: str | None = None
    level: str = ""
    label: str | None = None
    related: tuple[RelatedDiagnostic, ...] = ()

    @property
    def is_absolute(self) -> bool:
        return Path(self.file_path).is_absolute()

    def identity(self) -> tuple[str, Range, Severity, str]:
        """Key used when de-duplicating repeated diagnostics within one run."""

        return (self.file_path, self.range, self.severity, self.message)

    def resolved_against(self, base_dir: Path) -> FileDiagnostic:
        """Return a copy whose own and related paths are absolute under ``base_dir``."""

        return FileDiagnostic(
            file_path=resolve_path(self.file_path, base_dir),
            range=self.range,
            severity=self.severity,
            message=self.message,
            code=self.code,
            level=self.level,
            label=self.label,
            related=tuple(
                item.with_file_path(resolve_path(item.file_path, base_dir)) for item in self.related
            ),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "file_path": self.file_path,
            "range": self.range.to_dict(),
            "severity": self.severity.label,
            "message": self.message,
            "code": self.code,
            "level": self.level,
            "label": self.label,
            "related": [item.to_dict() for item in self.related],
        }


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Terminal result of one task."""

    state: TaskState
    exit_code: int | None = None
    error: str | None = None
    elapsed_seconds: float = 0.0
    # Set only when the process never spawned.
    start_failed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.COMPLETED and self.exit_code == 0


@dataclass(slots=True)
class Task:
    """One external command invocation owned by the task orchestrator."""

    verb: str
    argv: tuple[str, ...]
    cwd: Path
    task_id: str = field(default_factory=domain_ids.generate_task_id)
    state: TaskState = TaskState.CREATED
    kill_requested: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None
    outcome: TaskOutcome | None = None

    def mark_running(self) -> None:
        self.state = TaskState.RUNNING
        self.started_at = datetime.now(tz=UTC)

    def finish(
        self,
        state: TaskState,
        *,
        exit_code: int | None = None,
        error: str | None = None,
        start_failed: bool = False,
    ) -> TaskOutcome:
        if self.outcome is not None:
            raise RuntimeError(f"task {self.task_id} already finished as {self.outcome.state}")
        self.finished_at = datetime.now(tz=UTC)
        elapsed = 0.0
        if self.started_at is not None:
            elapsed = max((self.finished_at - self.started_at).total_seconds(), 0.0)
        self.state = state
        self.outcome = TaskOutcome(
            state=state,
            exit_code=exit_code,
            error=error,
            elapsed_seconds=elapsed,
            start_failed=start_failed,
        )
        return self.outcome

    @property
    def is_finished(self) -> bool:
        return self.outcome is not None

    @property
    def command_line(self) -> str:
        return " ".join(self.argv)


def resolve_path(file_path: str, base_dir: Path) -> str:
    """Resolve ``file_path`` against ``base_dir`` when relative and normalize it."""

    candidate = Path(file_path)
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return os.path.normpath(str(candidate))


__all__ = [
    "FileDiagnostic",
    "OutputLine",
    "Position",
    "Range",
    "RelatedDiagnostic",
    "Severity",
    "StreamSource",
    "Task",
    "TaskOutcome",
    "TaskState",
    "resolve_path",
]
