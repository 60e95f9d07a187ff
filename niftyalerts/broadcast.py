"""LiveBroadcaster — forwards pipeline events to connected UI clients.

Each client gets a bounded queue of ``{"event": ..., "data": ...}``
messages.  A client whose queue is full misses the message; the
pipeline never waits on a slow client.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Any

from niftyalerts.events import EventBus, EventType
from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.strategy.models import TradeSignal

logger = logging.getLogger("niftyalerts.broadcast")

NIFTY_DATA = "nifty_data"
OPTION_DATA = "option_data"
TRADE_SIGNAL = "trade_signal"


def to_payload(value: Any) -> Any:
    """JSON-ready copy of a dataclass / list / datetime tree."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_payload(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if isinstance(value, dict):
        return {k: to_payload(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class LiveBroadcaster:
    def __init__(self, max_queue_size: int = 256) -> None:
        self._max_queue_size = max_queue_size
        self._clients: set[asyncio.Queue] = set()
        self.dropped = 0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def register(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._clients.add(queue)
        logger.info("Live client connected (%d total)", len(self._clients))
        return queue

    def unregister(self, queue: asyncio.Queue) -> None:
        self._clients.discard(queue)
        logger.info("Live client disconnected (%d total)", len(self._clients))

    def publish(self, event: str, payload: Any) -> None:
        message = {"event": event, "data": to_payload(payload)}
        for queue in list(self._clients):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.debug("Live client queue full, dropping %s", event)

    def attach(self, bus: EventBus) -> None:
        """Subscribe to the bus events forwarded to UI clients."""
        bus.subscribe(EventType.INDEX_TICK, self.on_index_tick)
        bus.subscribe(EventType.OPTION_TICK, self.on_option_tick)
        bus.subscribe(EventType.SIGNAL, self.on_signal)

    def on_index_tick(self, tick: IndexTick) -> None:
        self.publish(NIFTY_DATA, tick)

    def on_option_tick(self, tick: OptionTick) -> None:
        self.publish(OPTION_DATA, tick)

    def on_signal(self, signal: TradeSignal) -> None:
        self.publish(TRADE_SIGNAL, signal)
