"""
Event Bus

Carries state change notifications from proxies and the dispatcher to
interested parties, such as the realtime broadcaster.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set, Type

from ..core.events import StateChanged, StateUpdated

logger = logging.getLogger(__name__)


Handler = Callable[[Any], Any]


class EventBus(ABC):
    """Abstract base class for event buses."""

    @abstractmethod
    async def publish(self, event: Any) -> None:
        """Publish an event to all subscribers."""
        pass

    @abstractmethod
    def emit(self, event: Any) -> None:
        """Publish from synchronous code without waiting for async handlers."""
        pass

    @abstractmethod
    def subscribe(self, handler: Handler, event_type: Optional[Type] = None) -> None:
        """Subscribe a handler to receive events."""
        pass


class InProcessBus(EventBus):
    """
    Simple in-process event bus for single-instance applications.

    Handlers may be plain functions or coroutine functions. A handler
    subscribed with ``event_type`` only receives events of that type.
    """

    def __init__(self):
        """Initialize the in-process event bus."""
        self._subscribers: List[tuple] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, handler: Handler, event_type: Optional[Type] = None) -> None:
        """
        Subscribe a handler to receive events.

        Args:
            handler: Function or coroutine function that accepts the event
            event_type: Only deliver events of this type (default: all)
        """
        self._subscribers.append((handler, event_type))

    def _handlers_for(self, event: Any) -> List[Handler]:
        return [
            handler for handler, event_type in self._subscribers
            if event_type is None or isinstance(event, event_type)
        ]

    async def publish(self, event: Any) -> None:
        """
        Publish an event to all subscribers and wait for them.

        A failing handler is logged and does not stop the others.
        """
        handlers = self._handlers_for(event)
        if not handlers:
            return

        async def call(handler):
            result = handler(event)
            if inspect.isawaitable(result):
                await result

        results = await asyncio.gather(*(call(h) for h in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error("Event handler %r raised: %s", handler, result, exc_info=result)

    def emit(self, event: Any) -> None:
        """
        Deliver an event from synchronous code.

        Sync handlers run immediately; coroutine handlers are scheduled on the
        running loop, or dropped with a warning when there is none.
        """
        for handler in self._handlers_for(event):
            try:
                result = handler(event)
            except Exception:
                logger.exception("Event handler %r raised", handler)
                continue
            if inspect.iscoroutine(result):
                self._schedule(result, handler)

    def _schedule(self, coro, handler) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop for async handler %r; event dropped", handler)
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed", exc_info=task.exception())

    def unsubscribe(self, handler: Handler) -> None:
        """
        Unsubscribe a handler from receiving events.

        Args:
            handler: Handler function to remove
        """
        self._subscribers = [(h, t) for h, t in self._subscribers if h != handler]

    def clear_subscribers(self) -> None:
        """Remove all subscribers."""
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        """Get the number of active subscribers."""
        return len(self._subscribers)


__all__ = ["EventBus", "InProcessBus", "StateChanged", "StateUpdated"]
