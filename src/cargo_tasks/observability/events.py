"""In-process event bus delivering task notifications to UI collaborators.

Subscribers are plain callables or coroutine functions, registered for one
:class:`EventType` or for everything. A failing subscriber never reaches the
orchestrator: its exception becomes a :class:`DispatchError` and the remaining
subscribers still run. The last ``buffer_size`` events stay available through
:meth:`EventBus.replay`.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

from cargo_tasks.domain.events import EventType, TaskEvent
from cargo_tasks.domain.ids import generate_event_id

Subscriber = Callable[[TaskEvent], object]

_ERROR_HISTORY: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    event_id: str
    target: str
    error_type: str
    message: str

    @classmethod
    def capture(cls, event: TaskEvent, callback: Subscriber, exc: BaseException) -> DispatchError:
        target = getattr(callback, "__qualname__", None) or type(callback).__name__
        return cls(event.event_id, str(target), type(exc).__name__, str(exc))


class EventBus:
    def __init__(self, *, buffer_size: int = 512) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size <= 0:
            raise ValueError(f"buffer_size must be an integer > 0, got {buffer_size!r}")
        self._history: deque[TaskEvent] = deque(maxlen=buffer_size)
        self._errors: deque[DispatchError] = deque(maxlen=_ERROR_HISTORY)
        self._subscribers: dict[int, tuple[EventType | None, Subscriber]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._tokens = iter(range(1, 1 << 62))
        self._lock = threading.Lock()

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Register ``callback``; ``None`` receives every event. Returns an unsubscribe token."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        wanted = None if event_type is None else EventType(event_type)
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = (wanted, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        task_id: str | None = None,
    ) -> tuple[TaskEvent, tuple[DispatchError, ...]]:
        """Publish from synchronous code.

        Coroutine subscribers are scheduled on the running loop and collected
        by :meth:`drain_async`; without a running loop they run to completion.
        """

        event = self._record(event_type, payload, task_id)
        errors: list[DispatchError] = []
        for callback in self._targets(event):
            try:
                result = callback(event)
            except Exception as exc:  # noqa: BLE001
                errors.append(DispatchError.capture(event, callback, exc))
                continue
            if inspect.isawaitable(result):
                error = self._schedule(event, callback, result)
                if error is not None:
                    errors.append(error)
        return event, self._keep(errors)

    async def emit_async(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        task_id: str | None = None,
    ) -> tuple[TaskEvent, tuple[DispatchError, ...]]:
        """Publish from async code, awaiting coroutine subscribers one after another."""

        event = self._record(event_type, payload, task_id)
        errors: list[DispatchError] = []
        for callback in self._targets(event):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(DispatchError.capture(event, callback, exc))
        return event, self._keep(errors)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        with self._lock:
            pending = list(self._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return self.dispatch_errors()

    def replay(
        self,
        *,
        event_type: str | EventType | None = None,
        task_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[TaskEvent, ...]:
        """Buffered events in publish order, optionally filtered and trimmed to the newest."""

        wanted = None if event_type is None else EventType(event_type)
        with self._lock:
            selected = [
                event
                for event in self._history
                if (wanted is None or event.event_type is wanted)
                and (task_id is None or event.task_id == task_id)
            ]
        if limit is not None:
            selected = selected[-limit:] if limit > 0 else []
        return tuple(selected)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._errors)

    def _record(
        self, event_type: str | EventType, payload: Mapping[str, object], task_id: str | None
    ) -> TaskEvent:
        event = TaskEvent(
            event_id=generate_event_id(),
            event_type=EventType(event_type),
            timestamp=datetime.now(tz=UTC),
            task_id=task_id,
            payload=dict(payload),  # type: ignore[arg-type]
        )
        with self._lock:
            self._history.append(event)
        return event

    def _targets(self, event: TaskEvent) -> list[Subscriber]:
        with self._lock:
            registered = list(self._subscribers.values())
        return [callback for wanted, callback in registered if wanted in (None, event.event_type)]

    def _schedule(
        self, event: TaskEvent, callback: Subscriber, awaitable: Any
    ) -> DispatchError | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None:
            try:
                asyncio.run(_await(awaitable))
            except Exception as exc:  # noqa: BLE001
                return DispatchError.capture(event, callback, exc)
            return None

        task = loop.create_task(_await(awaitable))
        with self._lock:
            self._background.add(task)

        def _finished(done: asyncio.Task[Any]) -> None:
            with self._lock:
                self._background.discard(done)
                if not done.cancelled() and isinstance(done.exception(), Exception):
                    self._errors.append(DispatchError.capture(event, callback, done.exception()))

        task.add_done_callback(_finished)
        return None

    def _keep(self, errors: list[DispatchError]) -> tuple[DispatchError, ...]:
        if errors:
            with self._lock:
                self._errors.extend(errors)
        return tuple(errors)


async def _await(awaitable: Any) -> Any:
    return await awaitable


__all__ = ["DispatchError", "EventBus", "Subscriber"]
