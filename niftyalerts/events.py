"""In-process publish/subscribe bus connecting the pipeline components.

Every subscriber of an event type receives every event (fan-out).
Plain callables run inline, in subscription order, before ``publish``
returns; awaitables returned by async handlers are scheduled as tasks
on the running loop.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("niftyalerts.events")


class EventType(str, Enum):
    INDEX_TICK = "index_tick"
    OPTION_TICK = "option_tick"
    STRATEGY_RESULT = "strategy_result"
    SIGNAL = "signal"
    ALERT_SENT = "alert_sent"
    FEED_FATAL = "feed_fatal"


class EventBus:
    """Fan-out event bus.

    A subscriber that raises is logged and skipped; the remaining
    subscribers still receive the event.
    """

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[Callable[[Any], Any]]] = {}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Callable[[Any], Any]) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__qualname__", handler), event_type.value)

    def unsubscribe(self, event_type: EventType, handler: Callable[[Any], Any]) -> None:
        handlers = self._subscribers.get(event_type, [])
        try:
            handlers.remove(handler)
        except ValueError:
            logger.warning("Handler not subscribed to %s", event_type.value)

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))

    def publish(self, event_type: EventType, payload: Any) -> None:
        """Deliver *payload* to every subscriber of *event_type*."""
        for handler in list(self._subscribers.get(event_type, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._schedule(event_type, result)
            except Exception as exc:
                logger.error(
                    "Subscriber %s failed on %s: %s",
                    getattr(handler, "__qualname__", handler), event_type.value, exc,
                    exc_info=True,
                )

    async def drain(self) -> None:
        """Wait until every scheduled async subscriber has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Internal ─────────────────────────────────────────────────────────

    def _schedule(self, event_type: EventType, awaitable) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(event_type, t))

    def _on_task_done(self, event_type: EventType, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async subscriber failed on %s: %s", event_type.value, exc)
