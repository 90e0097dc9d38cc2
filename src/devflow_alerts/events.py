"""Publish/subscribe event bus used by the alert and notification services."""

# pylint: disable=missing-function-docstring

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[..., Any]


class EventEmitter:
    """
    Synchronized observer list with optional queue subscribers.

    Handlers may be plain callables or coroutine functions. A handler that
    raises is logged and does not prevent the remaining handlers from running.
    Queue subscribers receive ``{"event", "args", "timestamp"}`` envelopes and
    are dropped when they stop draining.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._event_subscribers: List[asyncio.Queue] = []

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            pass

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def remove_all_listeners(self) -> None:
        self._handlers.clear()
        self._event_subscribers.clear()

    def register_event_subscriber(self, maxsize: int = 128) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._event_subscribers.append(queue)
        return queue

    def unregister_event_subscriber(self, queue: asyncio.Queue) -> None:
        try:
            self._event_subscribers.remove(queue)
        except ValueError:
            pass

    async def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # pylint: disable=broad-exception-caught
                logger.warning("Event handler failed", event_name=event, exc_info=True)

        if self._event_subscribers:
            self._publish(event, args)

    def _publish(self, event: str, args: tuple) -> None:
        envelope = {
            "event": event,
            "args": args,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        stale: List[asyncio.Queue] = []
        for queue in list(self._event_subscribers):
            try:
                queue.put_nowait(envelope)
            except asyncio.QueueFull:
                stale.append(queue)

        for queue in stale:
            logger.warning("Dropping event subscriber that stopped draining")
            self.unregister_event_subscriber(queue)


__all__ = ["EventEmitter", "EventHandler"]
