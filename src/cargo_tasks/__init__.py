"""
cargo-tasks — package root.

File: src/cargo_tasks/__init__.py

Purpose
- Drive ``cargo`` as a managed subprocess, stream its output, and turn its
  JSON-lines messages into per-file diagnostics for a host editor.

Import boundary
- Must not have side effects at import time (no config loading, no logging init).
- Heavy submodules (execution, diagnostics, ui) are imported explicitly by callers.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
