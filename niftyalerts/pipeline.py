"""AlertPipeline — wires the feed-to-alert components together.

    FeedConnection → DataIngestor ─(index_tick / option_tick)→ StrategyEngine
        → (strategy_result) → SignalSynthesizer → (signal) → AlertDispatcher
                                                          ↘ LiveBroadcaster
"""

import asyncio
import logging
from typing import Optional

from niftyalerts.alerts.dispatcher import AlertDispatcher
from niftyalerts.broadcast import LiveBroadcaster
from niftyalerts.config import Config
from niftyalerts.events import EventBus, EventType
from niftyalerts.feed.connection import FeedConnection
from niftyalerts.feed.ingestor import DataIngestor
from niftyalerts.repos.store import PipelineStore
from niftyalerts.signals.synthesizer import SignalSynthesizer
from niftyalerts.strategy_engine import StrategyEngine

logger = logging.getLogger("niftyalerts")

WARMUP_INDEX_TICKS = 100
WARMUP_OPTION_TICKS = 500


class AlertPipeline:
    """One running pipeline instance.

    Collaborators may be injected (tests); anything not supplied is
    built from *config*.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[PipelineStore] = None,
        bus: Optional[EventBus] = None,
        feed: Optional[FeedConnection] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        broadcaster: Optional[LiveBroadcaster] = None,
    ) -> None:
        self.config = config
        self.bus = bus or EventBus()
        self.store = store or PipelineStore(config.db_path)
        self.ingestor = DataIngestor(
            self.store, self.bus,
            index_symbol=config.index_symbol,
            chain_band=config.option_chain_band,
        )
        self.feed = feed or FeedConnection.from_config(
            config, underlying_provider=self.ingestor.latest_index_price,
        )
        self.engine = StrategyEngine(config.strategy_user_id, self.store, self.bus)
        self.synthesizer = SignalSynthesizer(
            self.store, self.bus,
            signal_threshold=config.signal_threshold,
            cooldown_seconds=config.signal_cooldown_seconds,
        )
        self.dispatcher = dispatcher or AlertDispatcher.from_config(config, self.store, self.bus)
        self.broadcaster = broadcaster or LiveBroadcaster()

        self.exit_code = 0
        self._stopped = asyncio.Event()
        self._wire()

    def _wire(self) -> None:
        self.feed.on_message(self.ingestor.handle_message)
        self.feed.on_fatal(self._on_feed_fatal)
        self.bus.subscribe(EventType.INDEX_TICK, self.engine.process_index_tick)
        self.bus.subscribe(EventType.OPTION_TICK, self.engine.process_option_tick)
        self.bus.subscribe(EventType.STRATEGY_RESULT, self.synthesizer.process_strategy_result)
        self.bus.subscribe(EventType.SIGNAL, self.dispatcher.process_signal)
        self.broadcaster.attach(self.bus)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Register strategies, replay recent history, then connect the feed."""
        await self.engine.initialize_default_strategies()
        await self.warm_up()
        await self.feed.connect()

    async def warm_up(self) -> None:
        """Feed recently persisted ticks to every strategy as one batch."""
        try:
            index_history = await self.store.find_recent_index_ticks(WARMUP_INDEX_TICKS)
            option_history = await self.store.find_recent_option_ticks(WARMUP_OPTION_TICKS)
        except Exception as exc:
            logger.error("Error loading tick history for warm-up: %s", exc)
            return
        logger.info(
            "Warming up strategies with %d index and %d option ticks",
            len(index_history), len(option_history),
        )
        self.engine.process_batch(index_history, option_history)

    async def run(self) -> int:
        """Run until ``stop()`` or a fatal feed failure; return the exit code."""
        await self.start()
        await self._stopped.wait()
        await self.shutdown()
        return self.exit_code

    def stop(self) -> None:
        self._stopped.set()

    async def shutdown(self) -> None:
        await self.feed.shutdown()
        await self.ingestor.drain()
        await self.bus.drain()
        logger.info("Pipeline stopped")

    def _on_feed_fatal(self, reason: str) -> None:
        logger.critical("Market-data feed is down (%s); stopping pipeline", reason)
        self.bus.publish(EventType.FEED_FATAL, reason)
        self.exit_code = 1
        self.stop()

    # ── Introspection ────────────────────────────────────────────────────

    def status(self) -> dict:
        return {
            "feed_state": self.feed.state.value,
            "feed_connected": self.feed.is_connected,
            "reconnect_attempts": self.feed.reconnect_attempts,
            "strategies": [
                {
                    "name": s.name,
                    "description": s.description,
                    "enabled": s.enabled,
                    "parameters": s.parameters,
                }
                for s in self.engine.strategies
            ],
            "signal_threshold": self.synthesizer.signal_threshold,
            "cooldown_seconds": self.synthesizer.cooldown_seconds,
            "recent_signals": len(self.synthesizer.recent_signals()),
            "live_clients": self.broadcaster.client_count,
        }
