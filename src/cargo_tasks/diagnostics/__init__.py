"""Diagnostic parsing and publication for build tool JSON output."""

from cargo_tasks.diagnostics.parser import (
    DiagnosticParser,
    MessageFormat,
    map_severity,
    span_to_range,
)
from cargo_tasks.diagnostics.publisher import (
    DiagnosticPublisher,
    DiagnosticsSink,
    InMemoryDiagnosticsSink,
)

__all__ = [
    "DiagnosticParser",
    "DiagnosticPublisher",
    "DiagnosticsSink",
    "InMemoryDiagnosticsSink",
    "MessageFormat",
    "map_severity",
    "span_to_range",
]
