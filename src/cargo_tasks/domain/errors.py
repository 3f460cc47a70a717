"""Typed error hierarchy for task execution failures."""

from __future__ import annotations

import errno


class CargoTasksError(RuntimeError):
    """Base error for failures surfaced by the task pipeline."""


class TaskStartError(CargoTasksError):
    """Raised when the build tool process could not be launched."""

    def __init__(self, executable: str, cause: OSError) -> None:
        self.executable = executable
        self.cause = cause
        detail = cause.strerror or str(cause) or cause.__class__.__name__
        super().__init__(f"{executable}: {detail}")

    @property
    def executable_missing(self) -> bool:
        """True when the failure means the executable does not exist on disk/PATH."""

        if self.cause.errno is None:
            return isinstance(self.cause, FileNotFoundError)
        if self.cause.errno != errno.ENOENT:
            return False
        # A missing cwd also reports ENOENT, but names the directory instead.
        filename = self.cause.filename
        return filename is None or str(filename) == self.executable


class WorkingDirectoryUnresolvedError(CargoTasksError):
    """Raised by working-directory resolvers when no usable directory is available."""


class UnhandledVerbError(CargoTasksError, ValueError):
    """Raised for verb strings or verbs that have no execution rule."""

    def __init__(self, verb: object) -> None:
        self.verb = verb
        super().__init__(f"Unhandled verb={verb!r}")


__all__ = [
    "CargoTasksError",
    "TaskStartError",
    "UnhandledVerbError",
    "WorkingDirectoryUnresolvedError",
]
