"""StrategyEngine — registry of active strategies and tick fan-out.

Every enabled strategy sees every tick; strategies never share state.
Results are re-published on the bus as ``EventType.STRATEGY_RESULT``.

Enable/disable/parameter updates change the in-memory strategy first and
persist afterwards.  A failed save is reported to the caller as ``False``
and the in-memory change is kept.
"""

import logging
from typing import Optional, Sequence

from niftyalerts.events import EventBus, EventType
from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.models.subscriber import StrategySettings
from niftyalerts.repos.store import PipelineStore
from niftyalerts.strategy.base import BaseStrategy
from niftyalerts.strategy.models import StrategyResult
from niftyalerts.strategy.registry import STRATEGY_REGISTRY, get_strategy

logger = logging.getLogger("niftyalerts.strategy_engine")


class StrategyEngine:
    """Owns the name → strategy map for one settings user.

    Args:
        user_id: Owner of the persisted strategy settings.
        store:   Persistence collaborator (``PipelineStore`` or duck-type).
        bus:     Event bus receiving ``STRATEGY_RESULT`` events.
    """

    def __init__(
        self,
        user_id: str,
        store: PipelineStore,
        bus: EventBus,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._bus = bus
        self._strategies: dict[str, BaseStrategy] = {}

    # ── Registry ─────────────────────────────────────────────────────────

    async def initialize_default_strategies(self) -> None:
        """Register one instance of every strategy in the registry."""
        for name in STRATEGY_REGISTRY:
            await self.add_strategy(get_strategy(name))
        logger.info(
            "Initialised %d default strategies for user %s",
            len(STRATEGY_REGISTRY), self._user_id,
        )

    async def add_strategy(self, strategy: BaseStrategy) -> None:
        """Register *strategy*, replacing any strategy with the same name.

        Saved settings for the strategy are applied before it starts
        receiving ticks.  A failure to load settings is logged and the
        strategy is registered with its defaults.
        """
        name = strategy.name
        if name in self._strategies:
            logger.warning("Strategy %s already exists. Replacing it.", name)
            self._strategies.pop(name).remove_result_listener(self._forward_result)

        try:
            settings = await self._store.load_strategy_settings(self._user_id, name)
            if settings is not None:
                strategy.set_parameters(settings.parameters)
                if settings.is_enabled:
                    strategy.enable()
                else:
                    strategy.disable()
                logger.info("Loaded settings for strategy %s", name)
        except Exception as exc:
            logger.error("Error loading settings for strategy %s: %s", name, exc)

        strategy.on_result(self._forward_result)
        self._strategies[name] = strategy
        logger.info("Strategy %s added to engine", name)

    def get_strategy(self, name: str) -> Optional[BaseStrategy]:
        return self._strategies.get(name)

    @property
    def strategies(self) -> list[BaseStrategy]:
        return list(self._strategies.values())

    @property
    def strategy_names(self) -> list[str]:
        return list(self._strategies.keys())

    # ── Fan-out ──────────────────────────────────────────────────────────

    def process_index_tick(self, tick: IndexTick) -> None:
        for strategy in self._enabled():
            try:
                strategy.process_index_tick(tick)
            except Exception as exc:
                logger.error("Strategy %s failed on index tick: %s", strategy.name, exc)

    def process_option_tick(self, tick: OptionTick) -> None:
        for strategy in self._enabled():
            try:
                strategy.process_option_tick(tick)
            except Exception as exc:
                logger.error("Strategy %s failed on option tick: %s", strategy.name, exc)

    def process_batch(
        self,
        index_history: Sequence[IndexTick],
        option_history: Sequence[OptionTick],
    ) -> None:
        for strategy in self._enabled():
            try:
                strategy.process_batch(index_history, option_history)
            except Exception as exc:
                logger.error("Strategy %s failed on batch: %s", strategy.name, exc)

    # ── Settings ─────────────────────────────────────────────────────────

    async def enable_strategy(self, name: str) -> bool:
        strategy = self._strategies.get(name)
        if strategy is None:
            logger.warning("Strategy %s not found", name)
            return False
        strategy.enable()
        return await self._persist(strategy)

    async def disable_strategy(self, name: str) -> bool:
        strategy = self._strategies.get(name)
        if strategy is None:
            logger.warning("Strategy %s not found", name)
            return False
        strategy.disable()
        return await self._persist(strategy)

    async def update_parameters(self, name: str, parameters: dict) -> bool:
        strategy = self._strategies.get(name)
        if strategy is None:
            logger.warning("Strategy %s not found", name)
            return False
        strategy.set_parameters(parameters)
        return await self._persist(strategy)

    # ── Internal ─────────────────────────────────────────────────────────

    def _enabled(self) -> list[BaseStrategy]:
        return [s for s in self._strategies.values() if s.enabled]

    def _forward_result(self, result: StrategyResult) -> None:
        self._bus.publish(EventType.STRATEGY_RESULT, result)

    async def _persist(self, strategy: BaseStrategy) -> bool:
        try:
            await self._store.save_strategy_settings(
                self._user_id,
                strategy.name,
                StrategySettings(
                    user_id=self._user_id,
                    strategy_name=strategy.name,
                    is_enabled=strategy.enabled,
                    parameters=strategy.parameters,
                )
            )
        except Exception as exc:
            logger.error("Error saving strategy settings for %s: %s", strategy.name, exc)
            return False
        return True
