"""
cargo-tasks — JSON-lines diagnostic parser.

File: src/cargo_tasks/diagnostics/parser.py

Purpose
- Turn one line of ``--message-format json`` output into zero or more
  :class:`FileDiagnostic` records.

Wire formats
- ``MessageFormat.CARGO``: ``{"reason": "compiler-message", "message": {...}}``
  envelopes. Every other ``reason`` (artifacts, build scripts, build-finished)
  carries no diagnostic.
- ``MessageFormat.RUSTC``: bare compiler diagnostics with top-level ``level``,
  ``message`` and ``spans``, as printed by ``cargo rustc`` on old toolchains.

Tool spans are 1-based with an exclusive ``column_end``; ranges produced here
are 0-based and half-open.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import StrEnum
from typing import Any, Final

import structlog

from cargo_tasks.domain.models import (
    FileDiagnostic,
    Position,
    Range,
    RelatedDiagnostic,
    Severity,
)

_COMPILER_MESSAGE_REASON: Final[str] = "compiler-message"
_MAX_EXPANSION_DEPTH: Final[int] = 64

_SEVERITY_BY_LEVEL: Final[dict[str, Severity]] = {
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
}


class MessageFormat(StrEnum):
    CARGO = "cargo"
    RUSTC = "rustc"


def map_severity(level: object) -> Severity:
    """Map a tool level string to a severity; unknown levels become information.

    ``"error: internal compiler error"`` and similar prefixed levels map by
    their leading word.
    """

    if not isinstance(level, str):
        return Severity.INFORMATION
    normalized = level.strip().lower()
    head = normalized.split(":", 1)[0].strip()
    return _SEVERITY_BY_LEVEL.get(head, Severity.INFORMATION)


def span_to_range(span: Mapping[str, Any]) -> Range:
    """Convert a 1-based tool span to a 0-based half-open range."""

    line_start = max(_as_int(span.get("line_start"), 1) - 1, 0)
    column_start = max(_as_int(span.get("column_start"), 1) - 1, 0)
    line_end = max(_as_int(span.get("line_end"), line_start + 1) - 1, 0)
    column_end = max(_as_int(span.get("column_end"), column_start + 1) - 1, 0)

    start = Position(line_start, column_start)
    end = Position(line_end, column_end)
    if end < start:
        end = start
    return Range(start, end)


class DiagnosticParser:
    """Stateless line parser apart from wire-format detection."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._format: MessageFormat | None = None

    @property
    def detected_format(self) -> MessageFormat | None:
        return self._format

    def reset(self) -> None:
        self._format = None

    def parse_line(self, text: str) -> list[FileDiagnostic]:
        """Parse one output line; malformed or irrelevant lines yield ``[]``."""

        try:
            payload = json.loads(text)
        except (TypeError, ValueError, RecursionError):
            self._logger.debug("diagnostic_line_skipped", reason="invalid_json")
            return []
        if not isinstance(payload, dict):
            self._logger.debug("diagnostic_line_skipped", reason="non_object_root")
            return []

        line_format = _classify(payload)
        if line_format is None:
            self._logger.debug("diagnostic_line_skipped", reason="unrecognized_shape")
            return []
        if self._format is None:
            self._format = line_format
            self._logger.debug("diagnostic_format_detected", format=line_format.value)
        elif line_format is not self._format:
            self._logger.debug(
                "diagnostic_line_skipped",
                reason="format_mismatch",
                expected=self._format.value,
                found=line_format.value,
            )
            return []

        if line_format is MessageFormat.CARGO:
            if payload.get("reason") != _COMPILER_MESSAGE_REASON:
                return []
            message = payload.get("message")
            if not isinstance(message, dict):
                return []
        else:
            message = payload

        diagnostic = _diagnostic_from_message(message)
        return [diagnostic] if diagnostic is not None else []


def _classify(payload: Mapping[str, Any]) -> MessageFormat | None:
    if isinstance(payload.get("reason"), str):
        return MessageFormat.CARGO
    if isinstance(payload.get("message"), str) and "level" in payload:
        return MessageFormat.RUSTC
    return None


def _diagnostic_from_message(message: Mapping[str, Any]) -> FileDiagnostic | None:
    spans = _spans(message)
    primary = _primary_span(spans)
    if primary is None:
        return None
    located = _resolve_file_span(primary)
    if located is None:
        return None
    file_path, span = located
    anchor = span_to_range(span)
    level = str(message.get("level") or "")

    return FileDiagnostic(
        file_path=file_path,
        range=anchor,
        severity=map_severity(level),
        message=str(message.get("message") or ""),
        code=_code(message),
        level=level,
        label=_optional_str(primary.get("label")),
        related=_related(message, spans, primary, file_path, anchor),
    )


def _related(
    message: Mapping[str, Any],
    spans: list[Mapping[str, Any]],
    primary: Mapping[str, Any],
    parent_file: str,
    parent_range: Range,
) -> tuple[RelatedDiagnostic, ...]:
    related: list[RelatedDiagnostic] = []

    for span in spans:
        if span is primary:
            continue
        label = _optional_str(span.get("label"))
        if label is None:
            continue
        located = _resolve_file_span(span)
        if located is None:
            continue
        related.append(RelatedDiagnostic(located[0], span_to_range(located[1]), label))

    children = message.get("children")
    if isinstance(children, list):
        for child in children:
            if not isinstance(child, Mapping):
                continue
            child_message = str(child.get("message") or "")
            child_spans = _spans(child)
            child_primary = _primary_span(child_spans)
            located = _resolve_file_span(child_primary) if child_primary is not None else None
            if located is None:
                file_path, child_range = parent_file, parent_range
            else:
                file_path, child_range = located[0], span_to_range(located[1])
            replacement = (
                child_primary.get("suggested_replacement") if child_primary is not None else None
            )
            if isinstance(replacement, str) and replacement:
                child_message = f"{child_message}: `{replacement}`"
            related.append(
                RelatedDiagnostic(
                    file_path, child_range, child_message, map_severity(child.get("level"))
                )
            )
    return tuple(related)


def _spans(message: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    raw = message.get("spans")
    if not isinstance(raw, list):
        return []
    return [span for span in raw if isinstance(span, Mapping)]


def _primary_span(spans: list[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    for span in spans:
        if span.get("is_primary") is True:
            return span
    return spans[0] if spans else None


def _resolve_file_span(span: Mapping[str, Any]) -> tuple[str, Mapping[str, Any]] | None:
    """Follow macro expansion sites until a span names a real file."""

    current: Mapping[str, Any] | None = span
    for _ in range(_MAX_EXPANSION_DEPTH):
        if current is None:
            return None
        file_name = current.get("file_name")
        if isinstance(file_name, str) and file_name and not _is_internal_file(file_name):
            return file_name, current
        expansion = current.get("expansion")
        nested = expansion.get("span") if isinstance(expansion, Mapping) else None
        current = nested if isinstance(nested, Mapping) else None
    return None


def _is_internal_file(file_name: str) -> bool:
    return file_name.startswith("<") and file_name.endswith(">")


def _code(message: Mapping[str, Any]) -> str | None:
    code = message.get("code")
    if isinstance(code, Mapping):
        return _optional_str(code.get("code"))
    return None


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _as_int(value: object, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


__all__ = ["DiagnosticParser", "MessageFormat", "map_severity", "span_to_range"]
