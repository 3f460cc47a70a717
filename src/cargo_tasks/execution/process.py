"""
cargo-tasks — single external process lifecycle.

File: src/cargo_tasks/execution/process.py

Purpose
- Spawn one external command, stream its stdout/stderr as decoded lines, and
  terminate it (and its descendants) on request.

Behavior
- A :class:`ProcessHandle` is an async iterator of typed events: exactly one
  ``ProcessStarted``, any number of ``ProcessLine``, then exactly one terminal
  ``ProcessExited`` or ``ProcessFailed``.
- Lines keep per-stream order; stdout and stderr interleave by arrival.
- A non-zero or signal exit code is a normal ``ProcessExited``.
- ``kill()`` is idempotent and may be called before the process is spawned.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import signal
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from cargo_tasks.constants import DEFAULT_KILL_GRACE_SECONDS
from cargo_tasks.domain.errors import TaskStartError
from cargo_tasks.domain.models import OutputLine, StreamSource

_READ_CHUNK_BYTES: Final[int] = 64 * 1024
_POSIX: Final[bool] = os.name == "posix"


@dataclass(frozen=True, slots=True)
class ProcessStarted:
    pid: int


@dataclass(frozen=True, slots=True)
class ProcessLine(OutputLine):
    """One decoded line from the child's stdout or stderr."""


@dataclass(frozen=True, slots=True)
class ProcessExited:
    exit_code: int


@dataclass(frozen=True, slots=True)
class ProcessFailed:
    error: TaskStartError


ProcessEvent = ProcessStarted | ProcessLine | ProcessExited | ProcessFailed
TerminalEvent = ProcessExited | ProcessFailed


class ProcessHandle:
    """Handle for one spawned (or spawning) external command."""

    def __init__(
        self,
        argv: Sequence[str],
        cwd: Path,
        *,
        env: Mapping[str, str] | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        logger: Any | None = None,
    ) -> None:
        if not argv:
            raise ValueError("argv must contain at least the executable")
        self.argv: tuple[str, ...] = tuple(str(item) for item in argv)
        self.cwd = Path(cwd)
        self._env = dict(env) if env is not None else None
        self._kill_grace_seconds = max(float(kill_grace_seconds), 0.0)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._queue: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        self._process: asyncio.subprocess.Process | None = None
        self._terminal: TerminalEvent | None = None
        self._terminal_ready = asyncio.Event()
        self._terminal_delivered = False
        self._kill_requested = False
        self._kill_task: asyncio.Task[None] | None = None
        self._driver: asyncio.Task[None] | None = None

    @property
    def executable(self) -> str:
        return self.argv[0]

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def kill_requested(self) -> bool:
        return self._kill_requested

    @property
    def finished(self) -> bool:
        return self._terminal is not None

    def _start(self) -> None:
        if self._driver is not None:
            raise RuntimeError("process handle already started")
        self._driver = asyncio.get_running_loop().create_task(
            self._drive(), name=f"cargo-tasks-process:{self.executable}"
        )

    def __aiter__(self) -> ProcessHandle:
        return self

    async def __anext__(self) -> ProcessEvent:
        if self._terminal_delivered:
            raise StopAsyncIteration
        event = await self._queue.get()
        if isinstance(event, (ProcessExited, ProcessFailed)):
            self._terminal_delivered = True
        return event

    async def wait(self) -> TerminalEvent:
        """Wait for the terminal event without consuming the event stream."""

        await self._terminal_ready.wait()
        assert self._terminal is not None  # noqa: S101
        return self._terminal

    def kill(self) -> None:
        """Request termination: graceful signal first, hard kill after the grace period."""

        if self._kill_requested or self._terminal is not None:
            return
        self._kill_requested = True
        process = self._process
        if process is None:
            # Not spawned yet; the driver terminates it right after spawn.
            self._logger.debug("process_kill_deferred", argv=list(self.argv))
            return
        self._schedule_termination(process)

    def _schedule_termination(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None or self._kill_task is not None:
            return
        self._kill_task = asyncio.get_running_loop().create_task(self._terminate(process))

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        self._logger.debug("process_terminating", pid=process.pid, argv=list(self.argv))
        _send_signal(process, hard=False)
        try:
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace_seconds)
        except TimeoutError:
            self._logger.warning(
                "process_kill_escalated", pid=process.pid, grace_seconds=self._kill_grace_seconds
            )
            _send_signal(process, hard=True)

    async def _drive(self) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                cwd=str(self.cwd),
                env=self._env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_POSIX,
            )
        except OSError as exc:
            error = TaskStartError(self.executable, exc)
            self._logger.info(
                "process_spawn_failed",
                argv=list(self.argv),
                cwd=str(self.cwd),
                error=str(error),
                executable_missing=error.executable_missing,
            )
            self._finish(ProcessFailed(error))
            return

        self._process = process
        self._logger.debug("process_spawned", pid=process.pid, argv=list(self.argv))
        self._queue.put_nowait(ProcessStarted(process.pid))
        if self._kill_requested:
            self._schedule_termination(process)

        try:
            await asyncio.gather(
                self._pump(process.stdout, StreamSource.STDOUT),
                self._pump(process.stderr, StreamSource.STDERR),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            _send_signal(process, hard=True)
            raise
        self._logger.debug("process_exited", pid=process.pid, exit_code=exit_code)
        self._finish(ProcessExited(exit_code))

    async def _pump(self, stream: asyncio.StreamReader | None, source: StreamSource) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            pending += decoder.decode(chunk)
            *complete, pending = pending.split("\n")
            for line in complete:
                self._queue.put_nowait(ProcessLine(source, _strip_cr(line)))
        pending += decoder.decode(b"", final=True)
        if pending:
            self._queue.put_nowait(ProcessLine(source, _strip_cr(pending)))

    def _finish(self, event: TerminalEvent) -> None:
        self._terminal = event
        self._queue.put_nowait(event)
        self._terminal_ready.set()


class ProcessRunner:
    """Factory for :class:`ProcessHandle` instances sharing kill/env settings."""

    def __init__(
        self,
        *,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
        env_overrides: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        if kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must be >= 0")
        self._kill_grace_seconds = kill_grace_seconds
        self._env_overrides = dict(env_overrides or {})
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def start(
        self,
        argv: Sequence[str],
        cwd: Path,
        *,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        """Spawn ``argv`` in ``cwd``; must be called with a running event loop.

        The child inherits the current environment plus the runner's overrides
        and then ``env``.
        """

        overrides = {**self._env_overrides, **(env or {})}
        merged_env = {**os.environ, **overrides} if overrides else None
        handle = ProcessHandle(
            argv,
            cwd,
            env=merged_env,
            kill_grace_seconds=self._kill_grace_seconds,
            logger=self._logger,
        )
        handle._start()
        return handle


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def _send_signal(process: asyncio.subprocess.Process, *, hard: bool) -> None:
    if process.returncode is not None:
        return
    with suppress(ProcessLookupError):
        if _POSIX:
            # The child leads its own session, so this reaches its descendants too.
            os.killpg(process.pid, signal.SIGKILL if hard else signal.SIGTERM)
        elif hard:
            process.kill()
        else:
            process.terminate()


__all__ = [
    "ProcessEvent",
    "ProcessExited",
    "ProcessFailed",
    "ProcessHandle",
    "ProcessLine",
    "ProcessRunner",
    "ProcessStarted",
    "StreamSource",
    "TerminalEvent",
]
