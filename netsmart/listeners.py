# =============================================================================
# NetSmart -- Listener Registry
# =============================================================================
#
# Observer fan-out with per-listener failure isolation.  Used for sensor
# status listeners, coordinator subscribers and telemetry listeners.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, TypeVar

from ._logging import logger

T = TypeVar("T")

Listener = Callable[[T], Any]


class ListenerRegistry(Generic[T]):
    """Ordered set of listeners.

    A listener that raises is logged and skipped; the rest still receive
    the value. Coroutine listeners are scheduled as background tasks.

    Args:
        name: Label used in log messages, e.g. ``"telemetry"``.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: dict[Listener[T], None] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._listeners)

    def __bool__(self) -> bool:
        return bool(self._listeners)

    def __contains__(self, listener: object) -> bool:
        return listener in self._listeners

    def add(self, listener: Listener[T]) -> Callable[[], None]:
        """Register *listener*; returns a handle that unregisters it."""
        self._listeners[listener] = None

        def unsubscribe() -> None:
            self.discard(listener)

        return unsubscribe

    def discard(self, listener: Listener[T]) -> None:
        self._listeners.pop(listener, None)

    def clear(self) -> None:
        self._listeners.clear()

    def notify(self, value: T) -> None:
        """Deliver *value* to every listener registered right now."""
        for listener in list(self._listeners):
            self.deliver(listener, value)

    def deliver(self, listener: Listener[T], value: T) -> None:
        """Deliver *value* to a single listener, guarded."""
        try:
            result = listener(value)
            if asyncio.iscoroutine(result):
                self._fire_task(result)
        except Exception as exc:
            logger.error("Error in %s listener %r: %s", self._name, listener, exc)

    def cancel_pending(self) -> None:
        for task in self._background_tasks:
            task.cancel()
        self._background_tasks.clear()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Error in async %s listener: %s", self._name, exc)
