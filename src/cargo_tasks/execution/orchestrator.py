"""
cargo-tasks — single-slot task orchestrator.

File: src/cargo_tasks/execution/orchestrator.py

Purpose
- Guarantee at most one build tool invocation runs at a time.
- Translate verbs into argument vectors, start them through a ProcessRunner, and
  route output either to the diagnostic pipeline or to the output sink.
- Report lifecycle changes to UI collaborators through the event bus.

State machine
- ``IDLE -> STARTING -> RUNNING -> IDLE``.
- A non-forced request while busy is dropped. A forced request records itself
  as the latest pending request, kills the current task, waits for it to end,
  and then retries from the idle branch unless a newer forced request arrived.
- Every event from a task is checked against the current slot and the task's
  kill flag, so output produced after a kill request never reaches the sinks.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from cargo_tasks.constants import (
    CHECK_PROBE_ARGS,
    COMPLETED_BANNER,
    DEFAULT_EXECUTABLE,
    ELAPSED_BANNER,
    MISSING_EXECUTABLE_MESSAGE,
    RUSTC_NO_TRANS_ARGS,
    START_FAILURE_MESSAGE,
    STARTED_BANNER,
)
from cargo_tasks.diagnostics.parser import DiagnosticParser
from cargo_tasks.diagnostics.publisher import DiagnosticPublisher
from cargo_tasks.domain.errors import WorkingDirectoryUnresolvedError
from cargo_tasks.domain.events import EventType
from cargo_tasks.domain.models import StreamSource, Task, TaskOutcome, TaskState
from cargo_tasks.execution.process import (
    ProcessExited,
    ProcessFailed,
    ProcessHandle,
    ProcessLine,
    ProcessRunner,
    ProcessStarted,
)
from cargo_tasks.execution.verbs import ArgsKind, Verb, build_argv, rule_for
from cargo_tasks.execution.workspace import UserArgsSource, WorkingDirectoryResolver
from cargo_tasks.observability.events import EventBus
from cargo_tasks.observability.logging import correlation_scope


class OrchestratorState(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


@runtime_checkable
class OutputSink(Protocol):
    """Human-readable output channel for the running task."""

    def append(self, text: str) -> None: ...

    def clear(self) -> None: ...

    def show(self) -> None: ...


class _DiscardOutputSink:
    def append(self, text: str) -> None:
        return None

    def clear(self) -> None:
        return None

    def show(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class RunRequest:
    verb: Verb
    args: tuple[str, ...]
    force: bool


@dataclass(slots=True)
class _ActiveTask:
    task: Task
    handle: ProcessHandle
    done: asyncio.Future[TaskOutcome]
    pump: asyncio.Task[None] | None = field(default=None)


class TaskOrchestrator:
    """Owns the single current-task slot and the run/stop lifecycle."""

    def __init__(
        self,
        *,
        runner: ProcessRunner,
        cwd_resolver: WorkingDirectoryResolver,
        publisher: DiagnosticPublisher,
        parser: DiagnosticParser | None = None,
        args_source: UserArgsSource | None = None,
        output: OutputSink | None = None,
        events: EventBus | None = None,
        executable: str = DEFAULT_EXECUTABLE,
        show_output: bool = True,
        diagnostics_enabled: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._runner = runner
        self._cwd_resolver = cwd_resolver
        self._publisher = publisher
        self._parser = parser if parser is not None else DiagnosticParser()
        self._args_source = args_source
        self._output: OutputSink = output if output is not None else _DiscardOutputSink()
        self._events = events if events is not None else EventBus()
        self._executable = executable
        self._show_output = show_output
        self._diagnostics_enabled = diagnostics_enabled
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._state = OrchestratorState.IDLE
        self._current: _ActiveTask | None = None
        self._pending: RunRequest | None = None
        self._idle_lock = asyncio.Lock()
        self._probe_lock = asyncio.Lock()
        self._check_supported: bool | None = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is not OrchestratorState.IDLE

    @property
    def current_task(self) -> Task | None:
        return self._current.task if self._current is not None else None

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def diagnostic_publishing_enabled(self) -> bool:
        return self._diagnostics_enabled

    def set_diagnostic_publishing_enabled(self, enabled: bool) -> None:
        self._diagnostics_enabled = bool(enabled)
        self._logger.debug("diagnostic_publishing_toggled", enabled=self._diagnostics_enabled)

    async def run(
        self,
        verb: str | Verb,
        args: Sequence[str] = (),
        *,
        force: bool = False,
    ) -> Task | None:
        """Start ``verb`` unless busy; with ``force`` replace the running task.

        Returns the started task, or ``None`` when the request was dropped,
        superseded, or could not resolve a working directory.
        """

        parsed = Verb.parse(verb)
        rule_for(parsed)
        request = RunRequest(verb=parsed, args=tuple(str(item) for item in args), force=force)

        if self.busy and not force:
            self._drop(request, reason="busy")
            return None
        if force:
            self._pending = request

        while True:
            if self.busy:
                if not force:
                    self._drop(request, reason="busy")
                    return None
                await self._make_room()
                if self._pending is not request:
                    self._drop(request, reason="superseded")
                    return None
                continue

            async with self._idle_lock:
                if self.busy:
                    if not force:
                        self._drop(request, reason="busy")
                        return None
                    continue
                if force:
                    if self._pending is not request:
                        self._drop(request, reason="superseded")
                        return None
                    self._pending = None
                return await self._start(request)

    async def invoke(
        self,
        verb: str | Verb,
        args: Sequence[str] | None = None,
        *,
        force: bool = True,
    ) -> Task | None:
        """Run ``verb`` with explicit args, or the configured defaults when ``args`` is None."""

        parsed = Verb.parse(verb)
        if args is None:
            args = self._default_args(rule_for(parsed).args_kind)
        return await self.run(parsed, args, force=force)

    async def invoke_check(
        self, args: Sequence[str] | None = None, *, force: bool = True
    ) -> Task | None:
        """Run ``check``, or ``rustc ... -- -Zno-trans`` on toolchains without it."""

        resolved = list(args) if args is not None else self._default_args(ArgsKind.CHECK)
        if await self.check_supported():
            return await self.run(Verb.CHECK, resolved, force=force)
        return await self.run(Verb.RUSTC, [*resolved, *RUSTC_NO_TRANS_ARGS], force=force)

    async def check_supported(self) -> bool:
        """Probe once whether the build tool provides ``check``; the result is cached."""

        async with self._probe_lock:
            if self._check_supported is not None:
                return self._check_supported

            root = Path(Path.cwd().anchor or "/")
            handle = self._runner.start((self._executable, *CHECK_PROBE_ARGS), root)
            terminal: ProcessExited | ProcessFailed | None = None
            async for event in handle:
                if isinstance(event, (ProcessExited, ProcessFailed)):
                    terminal = event
            supported = isinstance(terminal, ProcessExited) and terminal.exit_code == 0
            self._check_supported = supported
            self._logger.info("check_probe_completed", supported=supported)
            return supported

    def stop(self) -> bool:
        """Kill the current task; returns ``False`` when there was nothing to stop."""

        active = self._current
        if active is None:
            return False
        self._request_kill(active)
        return True

    async def wait(self) -> TaskOutcome | None:
        active = self._current
        if active is None:
            return None
        return await asyncio.shield(active.done)

    def _default_args(self, kind: ArgsKind | None) -> list[str]:
        if kind is None or self._args_source is None:
            return []
        return list(self._args_source.get_args(kind))

    def _drop(self, request: RunRequest, *, reason: str) -> None:
        self._logger.debug(
            "task_request_dropped",
            verb=request.verb.value,
            args=list(request.args),
            force=request.force,
            reason=reason,
        )

    async def _make_room(self) -> None:
        active = self._current
        if active is None:
            # Another caller is still resolving its working directory.
            async with self._idle_lock:
                return
        self._request_kill(active)
        await asyncio.shield(active.done)

    def _request_kill(self, active: _ActiveTask) -> None:
        if not active.task.kill_requested:
            self._logger.info("task_kill_requested", task_id=active.task.task_id)
        active.task.kill_requested = True
        active.handle.kill()

    async def _resolve_cwd(self) -> Path:
        resolved = self._cwd_resolver.cwd()
        if inspect.isawaitable(resolved):
            resolved = await resolved
        return Path(resolved)

    async def _start(self, request: RunRequest) -> Task | None:
        self._state = OrchestratorState.STARTING
        try:
            cwd = await self._resolve_cwd()
        except WorkingDirectoryUnresolvedError as exc:
            self._state = OrchestratorState.IDLE
            self._logger.info("task_cwd_unresolved", verb=request.verb.value, error=str(exc))
            await self._notify("error", str(exc))
            return None
        except BaseException:
            self._state = OrchestratorState.IDLE
            raise

        argv = build_argv(request.verb, request.args)
        task = Task(verb=request.verb.value, argv=argv, cwd=cwd)
        handle = self._runner.start((self._executable, *argv), cwd)
        active = _ActiveTask(
            task=task, handle=handle, done=asyncio.get_running_loop().create_future()
        )
        self._current = active
        active.pump = asyncio.get_running_loop().create_task(
            self._pump(active), name=f"cargo-tasks-pump:{task.task_id}"
        )
        self._logger.info(
            "task_requested", task_id=task.task_id, argv=list(argv), cwd=str(cwd)
        )
        return task

    def _is_live(self, active: _ActiveTask) -> bool:
        return active is self._current and not active.task.kill_requested

    async def _pump(self, active: _ActiveTask) -> None:
        task = active.task
        with correlation_scope(task_id=task.task_id):
            try:
                self._parser.reset()
                async for event in active.handle:
                    if isinstance(event, ProcessStarted):
                        await self._on_started(active, event)
                    elif isinstance(event, ProcessLine):
                        if self._is_live(active):
                            await self._on_line(active, event)
                    elif isinstance(event, ProcessExited):
                        await self._on_exited(active, event)
                    elif isinstance(event, ProcessFailed):
                        await self._on_failed(active, event)
            except Exception as exc:  # noqa: BLE001
                self._logger.exception("task_pump_crashed", task_id=task.task_id)
                active.handle.kill()
                if not task.is_finished:
                    task.finish(TaskState.FAILED, error=str(exc))
                # The slot stays taken until the killed process has exited.
                async for _ in active.handle:
                    pass
                await self._release(active)
            finally:
                if not active.done.done():
                    outcome = task.outcome or TaskOutcome(state=TaskState.FAILED)
                    active.done.set_result(outcome)

    async def _on_started(self, active: _ActiveTask, event: ProcessStarted) -> None:
        task = active.task
        task.mark_running()
        if active is self._current:
            self._state = OrchestratorState.RUNNING
        self._publisher.clear()
        await self._emit(EventType.DIAGNOSTICS_CLEARED, {}, task)
        await self._emit(EventType.BUSY_CHANGED, {"busy": True}, task)
        await self._emit(
            EventType.TASK_STARTED,
            {
                "argv": [self._executable, *task.argv],
                "cwd": str(task.cwd),
                "pid": event.pid,
                "started_at": task.started_at.isoformat() if task.started_at else None,
            },
            task,
        )
        self._output.clear()
        self._output.append(
            STARTED_BANNER.format(executable=self._executable, command_line=task.command_line)
            + "\n"
        )
        if self._show_output:
            self._output.show()
        self._logger.info("task_started", task_id=task.task_id, pid=event.pid)

    async def _on_line(self, active: _ActiveTask, event: ProcessLine) -> None:
        if event.source is StreamSource.STDOUT and event.text.startswith("{"):
            diagnostics = self._parser.parse_line(event.text)
            if not self._diagnostics_enabled:
                return
            for diagnostic in diagnostics:
                published = self._publisher.publish(diagnostic, active.task.cwd)
                if published is not None:
                    await self._emit(
                        EventType.DIAGNOSTICS_PUBLISHED, published.to_dict(), active.task
                    )
            return
        self._output.append(f"{event.text}\n")

    async def _on_exited(self, active: _ActiveTask, event: ProcessExited) -> None:
        task = active.task
        if task.kill_requested:
            outcome = task.finish(TaskState.KILLED, exit_code=event.exit_code)
            self._logger.info("task_killed", task_id=task.task_id, exit_code=event.exit_code)
            await self._emit(EventType.TASK_KILLED, {"exit_code": event.exit_code}, task)
        else:
            outcome = task.finish(TaskState.COMPLETED, exit_code=event.exit_code)
            self._output.append(COMPLETED_BANNER.format(exit_code=event.exit_code) + "\n")
            self._output.append(
                ELAPSED_BANNER.format(seconds=_format_seconds(outcome.elapsed_seconds)) + "\n"
            )
            self._logger.info(
                "task_exited",
                task_id=task.task_id,
                exit_code=event.exit_code,
                elapsed_seconds=outcome.elapsed_seconds,
            )
            await self._emit(
                EventType.TASK_COMPLETED,
                {"exit_code": event.exit_code, "elapsed_seconds": outcome.elapsed_seconds},
                task,
            )
        await self._release(active)

    async def _on_failed(self, active: _ActiveTask, event: ProcessFailed) -> None:
        task = active.task
        error = event.error
        task.finish(TaskState.FAILED, error=str(error), start_failed=True)
        self._logger.info(
            "task_start_failed",
            task_id=task.task_id,
            error=str(error),
            executable_missing=error.executable_missing,
        )
        await self._release(active)
        await self._emit(
            EventType.TASK_FAILED,
            {"error": str(error), "executable_missing": error.executable_missing},
            task,
        )
        if error.executable_missing:
            await self._notify(
                "info", MISSING_EXECUTABLE_MESSAGE.format(executable=self._executable)
            )
        else:
            await self._notify(
                "error", START_FAILURE_MESSAGE.format(executable=self._executable, error=error)
            )

    async def _release(self, active: _ActiveTask) -> None:
        if active is not self._current:
            return
        self._current = None
        self._state = OrchestratorState.IDLE
        await self._emit(EventType.BUSY_CHANGED, {"busy": False}, active.task)

    async def _notify(self, level: str, message: str) -> None:
        await self._events.emit_async(
            EventType.USER_NOTIFIED, {"level": level, "message": message}
        )

    async def _emit(self, event_type: EventType, payload: dict[str, object], task: Task) -> None:
        await self._events.emit_async(event_type, payload, task_id=task.task_id)


def _format_seconds(seconds: float) -> str:
    return f"{seconds:.3f}".rstrip("0").rstrip(".") or "0"


__all__ = ["OrchestratorState", "OutputSink", "RunRequest", "TaskOrchestrator"]
