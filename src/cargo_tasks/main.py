"""Process entrypoint: run the CLI and turn whatever escapes it into an exit status."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Statuses cargo-tasks reports itself; a completed task's own code passes through."""

    SUCCESS = 0
    TASK_FAILED = 1
    CONFIG_ERROR = 2
    TOOL_UNAVAILABLE = 3
    INTERNAL_ERROR = 4
    INTERRUPTED = 130


# Problems the user can fix by changing flags, files, or the working directory.
_USER_ERRORS: tuple[type[BaseException], ...] = (
    FileNotFoundError,
    NotADirectoryError,
    PermissionError,
    ValueError,
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    try:
        from cargo_tasks.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits with 2 on usage errors and 0 after --help.
        return _normalize_exit_code(exc.code)
    except KeyboardInterrupt:
        _say("interrupted")
        return ExitCode.INTERRUPTED.value
    except BaseException as exc:  # noqa: BLE001
        status = _classify(exc)
        if status is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _say(str(exc).strip() or type(exc).__name__)
        return status.value


def _normalize_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return ExitCode.SUCCESS.value
    if isinstance(raw_code, int) and 0 <= raw_code <= 255:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _say(raw_code.strip())
    return ExitCode.INTERNAL_ERROR.value


def _classify(exc: BaseException) -> ExitCode:
    from cargo_tasks.config.loader import ConfigLoadError
    from cargo_tasks.config.schema import ConfigValidationError
    from cargo_tasks.domain.errors import UnhandledVerbError, WorkingDirectoryUnresolvedError

    user_errors = (
        ConfigLoadError,
        ConfigValidationError,
        UnhandledVerbError,
        WorkingDirectoryUnresolvedError,
        *_USER_ERRORS,
    )
    if any(isinstance(link, user_errors) for link in _causes(exc)):
        return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """``exc`` followed by its explicit causes and unsuppressed contexts."""

    visited: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in visited:
        visited.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _say(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


__all__ = ["ExitCode", "cli_entrypoint"]
