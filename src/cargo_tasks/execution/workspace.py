"""Collaborator contracts for working-directory and user-argument lookup."""

from __future__ import annotations

from collections.abc import Awaitable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from cargo_tasks.domain.errors import WorkingDirectoryUnresolvedError
from cargo_tasks.execution.verbs import ArgsKind


@runtime_checkable
class WorkingDirectoryResolver(Protocol):
    """Resolve the directory the build tool runs in.

    ``cwd()`` may return the path directly or an awaitable; it raises
    :class:`WorkingDirectoryUnresolvedError` when no directory is usable.
    """

    def cwd(self) -> Path | Awaitable[Path]: ...


@runtime_checkable
class UserArgsSource(Protocol):
    def get_args(self, kind: ArgsKind) -> list[str]: ...


class StaticWorkingDirectory:
    """Resolver for a fixed directory, validated on every lookup."""

    def __init__(self, path: str | Path | None) -> None:
        self._path = Path(path).expanduser() if path is not None else None

    def cwd(self) -> Path:
        if self._path is None:
            raise WorkingDirectoryUnresolvedError("No working directory is configured")
        if not self._path.exists():
            raise WorkingDirectoryUnresolvedError(f"Working directory does not exist: {self._path}")
        if not self._path.is_dir():
            raise WorkingDirectoryUnresolvedError(
                f"Working directory is not a directory: {self._path}"
            )
        return self._path.resolve()


class ConfigArgsSource:
    """Read default per-verb arguments from the ``[args]`` config section."""

    def __init__(self, config: Mapping[str, Any]) -> None:
        section = config.get("args", {})
        self._args: dict[str, list[str]] = {}
        if isinstance(section, Mapping):
            for key, value in section.items():
                if isinstance(value, (list, tuple)):
                    self._args[str(key)] = [str(item) for item in value]

    def get_args(self, kind: ArgsKind) -> list[str]:
        return list(self._args.get(ArgsKind(kind).value, ()))


__all__ = [
    "ConfigArgsSource",
    "StaticWorkingDirectory",
    "UserArgsSource",
    "WorkingDirectoryResolver",
]
