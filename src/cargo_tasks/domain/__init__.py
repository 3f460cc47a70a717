"""
cargo-tasks — domain layer

File: src/cargo_tasks/domain/__init__.py

Purpose
- Value types shared by the execution, diagnostics, and ui packages: Task,
  FileDiagnostic, Range/Position, Severity, task events, and typed errors.

Non-functional requirements
- No IO side effects; only stdlib dependencies.
"""

from cargo_tasks.domain.errors import (
    CargoTasksError,
    TaskStartError,
    UnhandledVerbError,
    WorkingDirectoryUnresolvedError,
)
from cargo_tasks.domain.events import EventType, TaskEvent
from cargo_tasks.domain.models import (
    FileDiagnostic,
    OutputLine,
    Position,
    Range,
    RelatedDiagnostic,
    Severity,
    StreamSource,
    Task,
    TaskOutcome,
    TaskState,
)

__all__ = [
    "CargoTasksError",
    "EventType",
    "FileDiagnostic",
    "OutputLine",
    "Position",
    "Range",
    "RelatedDiagnostic",
    "Severity",
    "StreamSource",
    "Task",
    "TaskEvent",
    "TaskOutcome",
    "TaskStartError",
    "TaskState",
    "UnhandledVerbError",
    "WorkingDirectoryUnresolvedError",
]
