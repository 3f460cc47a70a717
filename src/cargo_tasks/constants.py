"""Stable constants shared across the task pipeline."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema version for persisted config files.
CONFIG_SCHEMA_VERSION: Final[int] = 1

DEFAULT_EXECUTABLE: Final[str] = "cargo"
DEFAULT_CONFIG_FILENAME: Final[str] = "cargo_tasks.toml"
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath(".cargo_tasks/logs")

# Structured-output flags appended after the verb for JSON-capable verbs.
JSON_MESSAGE_FORMAT_ARGS: Final[tuple[str, ...]] = ("--message-format", "json")

# Availability probe for the ``check`` subcommand (old toolchains lack it).
CHECK_PROBE_ARGS: Final[tuple[str, ...]] = ("check", "--help")
RUSTC_NO_TRANS_ARGS: Final[tuple[str, ...]] = ("--", "-Zno-trans")

DEFAULT_KILL_GRACE_SECONDS: Final[float] = 3.0

# User-facing messages.
MISSING_EXECUTABLE_MESSAGE: Final[str] = (
    'The "{executable}" command is not available. Make sure it is installed.'
)
START_FAILURE_MESSAGE: Final[str] = "Failed to start {executable}: {error}"
STARTED_BANNER: Final[str] = "Started {executable} {command_line}"
COMPLETED_BANNER: Final[str] = "Completed with code {exit_code}"
ELAPSED_BANNER: Final[str] = "It took approximately {seconds} seconds"

__all__ = [
    "CHECK_PROBE_ARGS",
    "COMPLETED_BANNER",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_EXECUTABLE",
    "DEFAULT_KILL_GRACE_SECONDS",
    "DEFAULT_LOG_DIR",
    "ELAPSED_BANNER",
    "JSON_MESSAGE_FORMAT_ARGS",
    "MISSING_EXECUTABLE_MESSAGE",
    "RUSTC_NO_TRANS_ARGS",
    "STARTED_BANNER",
    "START_FAILURE_MESSAGE",
]
