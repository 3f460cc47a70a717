"""Command-line surface: argument routing and terminal rendering."""

from cargo_tasks.ui.render import (
    CLIRenderer,
    TerminalOutputSink,
    create_renderer,
    format_diagnostic,
    format_related,
)

__all__ = [
    "CLIRenderer",
    "TerminalOutputSink",
    "create_renderer",
    "format_diagnostic",
    "format_related",
]
