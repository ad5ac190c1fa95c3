"""
catalyst.engine.bus — In-process publish/subscribe bus
=======================================================

Topics are the four :class:`~catalyst.engine.events.EventName` values.
Handlers may be plain callables or coroutine functions; they are invoked
sequentially, in subscription order, on the event loop.

A handler that raises is logged and skipped.  Its siblings on the same
topic still run.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from catalyst.engine.events import EventName
from catalyst.errors import InvariantError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]


class EventBus:
    """Minimal async pub/sub keyed by :class:`EventName`."""

    def __init__(self) -> None:
        self._handlers: dict[EventName, list[Handler]] = {name: [] for name in EventName}

    @staticmethod
    def _topic(name: str) -> EventName:
        try:
            return EventName(name)
        except ValueError:
            raise InvariantError(f"Unknown event name: {name!r}") from None

    def subscribe(self, name: str, handler: Handler) -> None:
        """Register *handler* for *name*.  Subscribing twice is a no-op."""
        handlers = self._handlers[self._topic(name)]
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._handlers[self._topic(name)]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, name: str) -> int:
        return len(self._handlers[self._topic(name)])

    async def publish(self, name: str, event: Any) -> int:
        """Deliver *event* to every subscriber of *name*.

        Returns the number of handlers that completed without raising.
        """
        topic = self._topic(name)
        delivered = 0
        # Copy: handlers may unsubscribe themselves mid-dispatch
        for handler in list(self._handlers[topic]):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber %r failed on %s", getattr(handler, "__qualname__", handler), topic
                )
        return delivered
