"""In-process event bus for pipeline events with replay and critical-event persistence hooks."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from itemflow.domain.events import CRITICAL_EVENT_TYPES, EventType, PipelineEvent
from itemflow.domain.models import JSONValue

logger = logging.getLogger(__name__)

Subscriber = Callable[[PipelineEvent], object]
PersistenceCallback = Callable[[PipelineEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Dispatch/persistence failure captured without interrupting publishers."""

    stage: str
    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """Event bus with sync+async subscribers and deterministic replay.

    Subscriber failures are recorded as :class:`DispatchError` values and
    never propagate into the publishing pipeline.
    """

    def __init__(
        self,
        *,
        buffer_size: int = 512,
        persist_event: PersistenceCallback | None = None,
        critical_event_types: Sequence[EventType] | None = None,
    ) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        if persist_event is not None and not callable(persist_event):
            raise ValueError("persistence callback must be callable")

        self._buffer = deque[PipelineEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()
        self._persist_event = persist_event
        self._critical_event_types = (
            CRITICAL_EVENT_TYPES
            if critical_event_types is None
            else frozenset(EventType(item) for item in critical_event_types)
        )

    def set_persistence_callback(self, callback: PersistenceCallback | None) -> None:
        if callback is not None and not callable(callback):
            raise ValueError("persistence callback must be callable")
        with self._lock:
            self._persist_event = callback

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to all events when ``event_type`` is ``None``."""
        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else EventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: PipelineEvent) -> tuple[DispatchError, ...]:
        """Publish from synchronous code; async subscribers are scheduled on the running loop."""
        targets = self._record(event)
        running_loop = _current_running_loop()
        errors: list[DispatchError] = []
        for stage, callback in targets:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    if running_loop is None:
                        asyncio.run(_await(result))
                    else:
                        self._track_task(running_loop.create_task(_await(result)), stage, event)
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(stage, event, callback, exc))
        return self._keep_errors(errors)

    async def publish_async(self, event: PipelineEvent) -> tuple[DispatchError, ...]:
        """Publish from async code and await async subscribers in subscription order."""
        targets = self._record(event)
        errors: list[DispatchError] = []
        for stage, callback in targets:
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(stage, event, callback, exc))
        return self._keep_errors(errors)

    def emit(
        self,
        event_type: EventType,
        payload: Mapping[str, JSONValue],
        *,
        correlation_id: str | None = None,
    ) -> tuple[PipelineEvent, tuple[DispatchError, ...]]:
        event = PipelineEvent.create(
            event_type, payload, correlation_id=correlation_id, timestamp=datetime.now(tz=UTC)
        )
        return event, self.publish(event)

    async def emit_async(
        self,
        event_type: EventType,
        payload: Mapping[str, JSONValue],
        *,
        correlation_id: str | None = None,
    ) -> tuple[PipelineEvent, tuple[DispatchError, ...]]:
        event = PipelineEvent.create(
            event_type, payload, correlation_id=correlation_id, timestamp=datetime.now(tz=UTC)
        )
        return event, await self.publish_async(event)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await async subscriber tasks scheduled by synchronous ``publish``."""
        with self._lock:
            pending = tuple(self._pending_async_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return self.dispatch_errors()

    def replay(
        self,
        *,
        event_type: str | EventType | None = None,
        correlation_id: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> tuple[PipelineEvent, ...]:
        """Replay buffered events in publish order, optionally filtered."""
        type_filter = None if event_type is None else EventType(event_type)
        with self._lock:
            events = tuple(self._buffer)
        filtered = [
            event
            for event in events
            if (type_filter is None or event.event_type is type_filter)
            and (correlation_id is None or event.correlation_id == correlation_id)
            and (since is None or event.timestamp > since)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self, *, limit: int | None = None) -> tuple[DispatchError, ...]:
        with self._lock:
            errors = tuple(self._dispatch_errors)
        if limit is None:
            return errors
        if limit <= 0:
            return ()
        return errors[-limit:]

    def _record(self, event: PipelineEvent) -> list[tuple[str, Callable[[PipelineEvent], object]]]:
        if not isinstance(event, PipelineEvent):
            raise ValueError(f"event must be PipelineEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())
            persistence = self._persist_event

        targets: list[tuple[str, Callable[[PipelineEvent], object]]] = []
        if persistence is not None and event.event_type in self._critical_event_types:
            targets.append(("persistence", persistence))
        targets.extend(
            ("subscriber", subscription.callback)
            for subscription in subscriptions
            if subscription.event_type is None or subscription.event_type is event.event_type
        )
        return targets

    def _keep_errors(self, errors: list[DispatchError]) -> tuple[DispatchError, ...]:
        if errors:
            for error in errors:
                logger.warning(
                    "event dispatch failed",
                    extra={
                        "stage": error.stage,
                        "event_id": error.event_id,
                        "target": error.target,
                        "error_type": error.error_type,
                    },
                )
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def _track_task(self, task: asyncio.Task[None], stage: str, event: PipelineEvent) -> None:
        with self._lock:
            self._pending_async_tasks.add(task)

        def _done(done: asyncio.Task[None]) -> None:
            with self._lock:
                self._pending_async_tasks.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if isinstance(exc, Exception):
                self._keep_errors([_dispatch_error(stage, event, _task_target(done), exc)])

        task.add_done_callback(_done)


async def _await(awaitable: object) -> None:
    await awaitable  # type: ignore[misc]


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _task_target(task: asyncio.Task[None]) -> str:
    return task.get_name()


def _dispatch_error(
    stage: str, event: PipelineEvent, target: object, exc: Exception
) -> DispatchError:
    return DispatchError(
        stage=stage,
        event_id=event.event_id,
        target=target if isinstance(target, str) else _callback_name(target),
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = ["DispatchError", "EventBus", "PersistenceCallback", "Subscriber"]
