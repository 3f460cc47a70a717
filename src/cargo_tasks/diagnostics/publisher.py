"""Per-file aggregation of diagnostics and reconciliation with an external sink."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

import structlog

from cargo_tasks.domain.models import FileDiagnostic, Range, Severity


@runtime_checkable
class DiagnosticsSink(Protocol):
    """Editor-side diagnostic collection keyed by absolute file path."""

    def set(self, file_path: str, diagnostics: Sequence[FileDiagnostic]) -> None: ...

    def clear(self) -> None: ...


class InMemoryDiagnosticsSink:
    """Sink that mirrors the published set; used by the CLI and tests."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[FileDiagnostic, ...]] = {}
        self.clear_count = 0

    def set(self, file_path: str, diagnostics: Sequence[FileDiagnostic]) -> None:
        self.files[file_path] = tuple(diagnostics)

    def clear(self) -> None:
        self.files.clear()
        self.clear_count += 1

    def all(self) -> list[FileDiagnostic]:
        return [item for path in sorted(self.files) for item in self.files[path]]


class DiagnosticPublisher:
    """Owns the published set for the current run.

    ``clear()`` drops every file at the start of a run; ``publish()`` then
    appends in arrival order and pushes the file's full sequence to the sink.
    """

    def __init__(
        self,
        sink: DiagnosticsSink,
        *,
        deduplicate: bool = False,
        logger: Any | None = None,
    ) -> None:
        self._sink = sink
        self._deduplicate = deduplicate
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._published: dict[str, list[FileDiagnostic]] = {}
        self._seen: set[tuple[str, Range, Severity, str]] = set()

    @property
    def deduplicate(self) -> bool:
        return self._deduplicate

    def clear(self) -> None:
        dropped = sum(len(items) for items in self._published.values())
        self._published.clear()
        self._seen.clear()
        self._sink.clear()
        self._logger.debug("diagnostics_cleared", dropped=dropped)

    def publish(self, diagnostic: FileDiagnostic, base_dir: Path) -> FileDiagnostic | None:
        """Add one diagnostic; returns the resolved record, or ``None`` if suppressed."""

        resolved = diagnostic.resolved_against(base_dir)
        if self._deduplicate:
            key = resolved.identity()
            if key in self._seen:
                self._logger.debug("diagnostic_duplicate_suppressed", file_path=resolved.file_path)
                return None
            self._seen.add(key)

        bucket = self._published.setdefault(resolved.file_path, [])
        bucket.append(resolved)
        self._sink.set(resolved.file_path, tuple(bucket))
        return resolved

    def published(self) -> Mapping[str, tuple[FileDiagnostic, ...]]:
        return MappingProxyType({path: tuple(items) for path, items in self._published.items()})

    def count(self) -> int:
        return sum(len(items) for items in self._published.values())


__all__ = ["DiagnosticPublisher", "DiagnosticsSink", "InMemoryDiagnosticsSink"]
