"""Output rendering for the cargo-tasks CLI.

File: src/cargo_tasks/ui/render.py

Purpose
- Provide a thin rendering layer for CLI output.
- Provide the terminal implementation of the orchestrator's output sink.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- Diagnostics render as ``path:line:col: severity[code]: message`` with
  1-based coordinates, related entries indented below their parent.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cargo_tasks.domain.models import FileDiagnostic, Range, RelatedDiagnostic


class TerminalOutputSink:
    """Output sink writing task output to a text stream."""

    def __init__(self, stream: TextIO | None = None, *, enabled: bool = True) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._enabled = enabled
        self.shown = False

    def append(self, text: str) -> None:
        if not self._enabled:
            return
        self._stream.write(text)
        self._stream.flush()

    def clear(self) -> None:
        # A terminal keeps its scrollback.
        return None

    def show(self) -> None:
        self.shown = True


class CLIRenderer:
    """Thin CLI output renderer producing deterministic plain text."""

    def __init__(self, *, stream: TextIO | None = None, verbose: bool = False) -> None:
        self.verbose = verbose
        self._stream = stream

    def _print(self, text: str = "") -> None:
        print(text, file=self._stream if self._stream is not None else sys.stdout)

    def heading(self, text: str) -> None:
        self._print(text)

    def kv(self, key: str, value: object) -> None:
        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def section(self, title: str) -> None:
        self._print(f"\n{title}")

    def warning(self, text: str) -> None:
        print(f"warning: {text}", file=sys.stderr)

    def error(self, text: str) -> None:
        print(f"error: {text}", file=sys.stderr)

    def notice(self, level: str, message: str) -> None:
        """Render a user notification; errors and warnings go to stderr."""

        if level == "error":
            self.error(message)
        elif level == "warning":
            self.warning(message)
        else:
            self._print(message)

    def diagnostics(self, items: Iterable[FileDiagnostic]) -> int:
        """Print diagnostics grouped by file; returns how many were printed."""

        count = 0
        for diagnostic in items:
            self._print(format_diagnostic(diagnostic))
            for related in diagnostic.related:
                self._print(f"    {format_related(related)}")
            count += 1
        return count

    def summary(self, *, errors: int, warnings: int, other: int) -> None:
        self._print(f"{errors} error(s), {warnings} warning(s), {other} other diagnostic(s)")


def format_diagnostic(diagnostic: FileDiagnostic) -> str:
    code = f"[{diagnostic.code}]" if diagnostic.code else ""
    level = diagnostic.level or diagnostic.severity.label
    location = _format_location(diagnostic.file_path, diagnostic.range)
    return f"{location}: {level}{code}: {diagnostic.message}"


def format_related(related: RelatedDiagnostic) -> str:
    location = _format_location(related.file_path, related.range)
    return f"{related.severity.label}: {location}: {related.message}"


def _format_location(file_path: str, span: Range) -> str:
    return f"{file_path}:{span.start.line + 1}:{span.start.character + 1}"


def create_renderer(*, verbose: bool = False, stream: TextIO | None = None) -> CLIRenderer:
    return CLIRenderer(stream=stream, verbose=verbose)


__all__ = [
    "CLIRenderer",
    "TerminalOutputSink",
    "create_renderer",
    "format_diagnostic",
    "format_related",
]
