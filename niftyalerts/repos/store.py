"""Async persistence facade used by the pipeline components.

Wraps the blocking SQLite repositories with ``asyncio.to_thread`` so
callers on the event loop never block on disk I/O.  Errors propagate;
each caller decides whether to log and swallow them.
"""

import asyncio
import dataclasses
from typing import Optional, Union

from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.models.subscriber import AlertConfig, StrategySettings
from niftyalerts.repos.signal_repo import SignalRepo
from niftyalerts.repos.subscriber_repo import AlertConfigRepo, StrategySettingsRepo
from niftyalerts.repos.tick_repo import TickRepo
from niftyalerts.strategy.models import TradeSignal


class PipelineStore:
    """Storage collaborator for ticks, signals, alert configs and settings.

    Args:
        db_path: Path to an initialised SQLite database (see ``init_db``).
    """

    def __init__(self, db_path: str) -> None:
        self._ticks = TickRepo(db_path)
        self._signals = SignalRepo(db_path)
        self._alert_configs = AlertConfigRepo(db_path)
        self._settings = StrategySettingsRepo(db_path)

    # ── Ticks ────────────────────────────────────────────────────────────

    async def insert_tick(self, tick: Union[IndexTick, OptionTick]) -> None:
        if isinstance(tick, IndexTick):
            await asyncio.to_thread(self._ticks.insert_index_tick, tick)
        else:
            await asyncio.to_thread(self._ticks.insert_option_tick, tick)

    async def find_latest_index_price(self) -> Optional[float]:
        tick = await asyncio.to_thread(self._ticks.get_latest_index_tick)
        return tick.price if tick else None

    async def find_option_chain(
        self,
        expiry_date: str,
        strike_range: tuple[float, float],
    ) -> list[OptionTick]:
        lower, upper = strike_range
        return await asyncio.to_thread(
            self._ticks.get_option_chain, expiry_date, lower, upper,
        )

    async def find_recent_index_ticks(self, limit: int = 100) -> list[IndexTick]:
        return await asyncio.to_thread(self._ticks.get_recent_index_ticks, limit)

    async def find_recent_option_ticks(self, limit: int = 500) -> list[OptionTick]:
        return await asyncio.to_thread(self._ticks.get_recent_option_ticks, limit)

    # ── Signals ──────────────────────────────────────────────────────────

    async def insert_signal(self, signal: TradeSignal) -> None:
        await asyncio.to_thread(self._signals.insert_signal, signal)

    async def find_signal_by_id(self, signal_id: str) -> Optional[TradeSignal]:
        return await asyncio.to_thread(self._signals.get_signal, signal_id)

    async def find_signals(
        self,
        limit: int = 20,
        strategy_name: Optional[str] = None,
    ) -> list[TradeSignal]:
        return await asyncio.to_thread(self._signals.get_signals, limit, strategy_name)

    # ── Subscribers ──────────────────────────────────────────────────────

    async def find_alert_configs(self) -> list[AlertConfig]:
        return await asyncio.to_thread(self._alert_configs.get_all)

    async def upsert_alert_config(self, config: AlertConfig) -> None:
        await asyncio.to_thread(self._alert_configs.upsert, config)

    async def load_strategy_settings(
        self,
        user_id: str,
        strategy_name: str,
    ) -> Optional[StrategySettings]:
        return await asyncio.to_thread(self._settings.get, user_id, strategy_name)

    async def save_strategy_settings(
        self,
        user_id: str,
        strategy_name: str,
        settings: StrategySettings,
    ) -> None:
        """Store *settings* under (*user_id*, *strategy_name*).

        The key arguments take precedence over the ids carried on the record.
        """
        record = dataclasses.replace(settings, user_id=user_id, strategy_name=strategy_name)
        await asyncio.to_thread(self._settings.upsert, record)
