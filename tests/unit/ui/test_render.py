"""Unit tests for plain-text CLI rendering."""

from __future__ import annotations

import io

import pytest

from cargo_tasks.domain.models import FileDiagnostic, Range, RelatedDiagnostic, Severity
from cargo_tasks.ui.render import (
    TerminalOutputSink,
    create_renderer,
    format_diagnostic,
    format_related,
)


def _diagnostic() -> FileDiagnostic:
    return FileDiagnostic(
        file_path="/work/demo/src/main.rs",
        range=Range.of(4, 17, 4, 20),
        severity=Severity.ERROR,
        message="mismatched types",
        code="E0308",
        level="error",
        related=(
            RelatedDiagnostic(
                "/work/demo/src/main.rs", Range.of(4, 11, 4, 14), "expected due to this"
            ),
        ),
    )


def test_format_diagnostic_uses_one_based_coordinates() -> None:
    assert (
        format_diagnostic(_diagnostic())
        == "/work/demo/src/main.rs:5:18: error[E0308]: mismatched types"
    )


def test_format_diagnostic_falls_back_to_severity_label() -> None:
    bare = FileDiagnostic("a.rs", Range.of(0, 0, 0, 0), Severity.INFORMATION, "note")
    assert format_diagnostic(bare) == "a.rs:1:1: information: note"


def test_format_related_prefixes_severity() -> None:
    related = _diagnostic().related[0]
    assert format_related(related) == (
        "information: /work/demo/src/main.rs:5:12: expected due to this"
    )


def test_renderer_prints_diagnostics_with_indented_related_entries() -> None:
    stream = io.StringIO()
    renderer = create_renderer(stream=stream)

    assert renderer.diagnostics([_diagnostic()]) == 1
    renderer.summary(errors=1, warnings=0, other=0)

    lines = stream.getvalue().splitlines()
    assert lines[0].endswith("error[E0308]: mismatched types")
    assert lines[1].startswith("    information: ")
    assert lines[2] == "1 error(s), 0 warning(s), 0 other diagnostic(s)"


def test_notices_route_by_level(capsys: pytest.CaptureFixture[str]) -> None:
    renderer = create_renderer()
    renderer.notice("info", 'The "cargo" command is not available.')
    renderer.notice("error", "Failed to start cargo: boom")

    captured = capsys.readouterr()
    assert captured.out == 'The "cargo" command is not available.\n'
    assert captured.err == "error: Failed to start cargo: boom\n"


def test_terminal_output_sink_respects_enabled_flag() -> None:
    stream = io.StringIO()
    sink = TerminalOutputSink(stream)
    sink.append("Started cargo check\n")
    sink.clear()
    sink.show()
    assert stream.getvalue() == "Started cargo check\n"
    assert sink.shown

    muted_stream = io.StringIO()
    muted = TerminalOutputSink(muted_stream, enabled=False)
    muted.append("hidden\n")
    assert muted_stream.getvalue() == ""
