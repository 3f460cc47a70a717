"""Scripted stand-ins for the process runner and output sink."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from cargo_tasks.domain.errors import TaskStartError
from cargo_tasks.domain.models import StreamSource
from cargo_tasks.execution.process import (
    ProcessEvent,
    ProcessExited,
    ProcessFailed,
    ProcessLine,
    ProcessStarted,
)


class FakeHandle:
    """Process handle whose events are pushed by the test."""

    def __init__(self, argv: Sequence[str], cwd: Path, *, kill_exits: bool = True) -> None:
        self.argv = tuple(argv)
        self.cwd = cwd
        self.kill_calls = 0
        self._kill_exits = kill_exits
        self._queue: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        self._terminal_sent = False
        self._terminal_delivered = False

    def started(self, pid: int = 4242) -> FakeHandle:
        self._queue.put_nowait(ProcessStarted(pid))
        return self

    def stdout(self, text: str) -> FakeHandle:
        self._queue.put_nowait(ProcessLine(StreamSource.STDOUT, text))
        return self

    def stderr(self, text: str) -> FakeHandle:
        self._queue.put_nowait(ProcessLine(StreamSource.STDERR, text))
        return self

    def exit(self, code: int = 0) -> FakeHandle:
        if not self._terminal_sent:
            self._terminal_sent = True
            self._queue.put_nowait(ProcessExited(code))
        return self

    def fail(self, error: OSError) -> FakeHandle:
        if not self._terminal_sent:
            self._terminal_sent = True
            self._queue.put_nowait(ProcessFailed(TaskStartError(self.argv[0], error)))
        return self

    @property
    def terminal_delivered(self) -> bool:
        return self._terminal_delivered

    def kill(self) -> None:
        self.kill_calls += 1
        if self._kill_exits:
            self.exit(-15)

    def __aiter__(self) -> FakeHandle:
        return self

    async def __anext__(self) -> ProcessEvent:
        if self._terminal_delivered:
            raise StopAsyncIteration
        event = await self._queue.get()
        if isinstance(event, (ProcessExited, ProcessFailed)):
            self._terminal_delivered = True
        return event


Script = Callable[[FakeHandle], object]


class FakeRunner:
    """Records every start request; ``script`` pre-loads events for each handle."""

    def __init__(self, script: Script | None = None, *, kill_exits: bool = True) -> None:
        self.handles: list[FakeHandle] = []
        self.envs: list[Mapping[str, str] | None] = []
        self._script = script
        self._kill_exits = kill_exits

    def start(
        self, argv: Sequence[str], cwd: Path, *, env: Mapping[str, str] | None = None
    ) -> FakeHandle:
        handle = FakeHandle(argv, cwd, kill_exits=self._kill_exits)
        self.handles.append(handle)
        self.envs.append(env)
        if self._script is not None:
            self._script(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


class RecordingOutput:
    """Output sink that keeps every appended chunk."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.clear_count = 0
        self.show_count = 0

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def append(self, text: str) -> None:
        self.chunks.append(text)

    def clear(self) -> None:
        self.clear_count += 1
        self.chunks.clear()

    def show(self) -> None:
        self.show_count += 1


def succeed(handle: FakeHandle) -> None:
    handle.started().exit(0)


__all__ = ["FakeHandle", "FakeRunner", "RecordingOutput", "succeed"]
