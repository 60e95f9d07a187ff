"""Tests for niftyalerts.strategy_engine — registry, settings, fan-out."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from niftyalerts.events import EventBus, EventType
from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.models.subscriber import StrategySettings
from niftyalerts.strategy.base import BaseStrategy
from niftyalerts.strategy.models import BUY, StrategyResult
from niftyalerts.strategy.rsi import RsiStrategy
from niftyalerts.strategy_engine import StrategyEngine

_TS = datetime(2025, 6, 10, 9, 15, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────


class RecordingStrategy(BaseStrategy):
    """Records every input; emits one BUY per index tick."""

    default_parameters = {"window": 3}

    def __init__(self, name: str, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.index_ticks: list[IndexTick] = []
        self.option_ticks: list[OptionTick] = []
        self.batches: list[tuple] = []
        super().__init__()

    def analyze(self, tick: IndexTick) -> None:
        if self.fail:
            raise RuntimeError("strategy exploded")
        self.index_ticks.append(tick)
        self.emit_result(
            StrategyResult(
                strategy_name=self.name,
                signal_type=BUY,
                instrument="NIFTY 22500 CE",
                confidence=80,
                indicators=[],
                timestamp=tick.timestamp,
            )
        )

    def analyze_option(self, tick: OptionTick) -> None:
        self.option_ticks.append(tick)

    def analyze_batch(self, index_history, option_history) -> None:
        self.batches.append((list(index_history), list(option_history)))


def _index_tick(price: float = 22500.0) -> IndexTick:
    return IndexTick("NSE:NIFTY50", price, 0.0, 0.0, price, price, price, price, 100, _TS)


def _option_tick() -> OptionTick:
    return OptionTick(
        "NSE:NIFTY25JUN22500CE", 22500.0, "2025-06-26", "CE", 100.0, 0.0, 0.0,
        1000, 100_000.0, 0.0, 13.0, 99.5, 100.5, 22500.0, _TS,
    )


def _make_store(settings=None) -> AsyncMock:
    store = AsyncMock()
    store.load_strategy_settings.return_value = settings
    return store


def _make_engine(store=None):
    store = store or _make_store()
    bus = EventBus()
    results: list[StrategyResult] = []
    bus.subscribe(EventType.STRATEGY_RESULT, results.append)
    return StrategyEngine("system", store, bus), store, results


# ── Registry ─────────────────────────────────────────────────────────────


class TestRegistry:
    @pytest.mark.asyncio
    async def test_initialize_default_strategies(self):
        engine, _, _ = _make_engine()
        await engine.initialize_default_strategies()
        assert set(engine.strategy_names) == {"RSI Strategy", "Open Interest Strategy"}

    @pytest.mark.asyncio
    async def test_persisted_settings_applied_before_activation(self):
        settings = StrategySettings(
            user_id="system",
            strategy_name="RSI Strategy",
            is_enabled=False,
            parameters={"rsi_period": 10},
        )
        engine, store, _ = _make_engine(_make_store(settings))
        await engine.add_strategy(RsiStrategy())

        strategy = engine.get_strategy("RSI Strategy")
        assert strategy.enabled is False
        assert strategy.rsi_period == 10
        store.load_strategy_settings.assert_awaited_once_with("system", "RSI Strategy")

    @pytest.mark.asyncio
    async def test_settings_load_failure_keeps_defaults(self, caplog):
        store = _make_store()
        store.load_strategy_settings.side_effect = RuntimeError("db locked")
        engine, _, _ = _make_engine(store)
        await engine.add_strategy(RsiStrategy())

        strategy = engine.get_strategy("RSI Strategy")
        assert strategy.enabled is True
        assert strategy.rsi_period == 14
        assert "db locked" in caplog.text

    @pytest.mark.asyncio
    async def test_add_replaces_same_name(self, caplog):
        engine, _, _ = _make_engine()
        first = RecordingStrategy("Echo")
        second = RecordingStrategy("Echo")
        await engine.add_strategy(first)
        await engine.add_strategy(second)

        assert engine.get_strategy("Echo") is second
        assert len(engine.strategies) == 1
        assert "Replacing" in caplog.text

    @pytest.mark.asyncio
    async def test_re_adding_same_instance_forwards_results_once(self):
        engine, _, results = _make_engine()
        strategy = RecordingStrategy("Echo")
        await engine.add_strategy(strategy)
        await engine.add_strategy(strategy)

        engine.process_index_tick(_index_tick())
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_replaced_strategy_is_detached(self):
        engine, _, results = _make_engine()
        first = RecordingStrategy("Echo")
        await engine.add_strategy(first)
        await engine.add_strategy(RecordingStrategy("Echo"))

        first.process_index_tick(_index_tick())
        assert results == []

    def test_unknown_strategy_lookup(self):
        engine, _, _ = _make_engine()
        assert engine.get_strategy("nope") is None


# ── Fan-out ──────────────────────────────────────────────────────────────


class TestFanOut:
    @pytest.mark.asyncio
    async def test_every_enabled_strategy_sees_every_tick(self):
        engine, _, results = _make_engine()
        a, b = RecordingStrategy("A"), RecordingStrategy("B")
        await engine.add_strategy(a)
        await engine.add_strategy(b)

        tick = _index_tick()
        engine.process_index_tick(tick)
        engine.process_option_tick(_option_tick())

        assert a.index_ticks == [tick] and b.index_ticks == [tick]
        assert len(a.option_ticks) == 1 and len(b.option_ticks) == 1
        assert sorted(r.strategy_name for r in results) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_disabled_strategy_skipped(self):
        engine, _, results = _make_engine()
        a, b = RecordingStrategy("A"), RecordingStrategy("B")
        await engine.add_strategy(a)
        await engine.add_strategy(b)
        b.disable()

        engine.process_index_tick(_index_tick())
        assert len(a.index_ticks) == 1
        assert b.index_ticks == []
        assert [r.strategy_name for r in results] == ["A"]

    @pytest.mark.asyncio
    async def test_failing_strategy_isolated(self, caplog):
        engine, _, results = _make_engine()
        broken, healthy = RecordingStrategy("Broken", fail=True), RecordingStrategy("Healthy")
        await engine.add_strategy(broken)
        await engine.add_strategy(healthy)

        engine.process_index_tick(_index_tick())
        assert len(healthy.index_ticks) == 1
        assert [r.strategy_name for r in results] == ["Healthy"]
        assert "strategy exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_batch_forwarded(self):
        engine, _, _ = _make_engine()
        a = RecordingStrategy("A")
        await engine.add_strategy(a)
        engine.process_batch([_index_tick()], [_option_tick()])
        assert len(a.batches) == 1


# ── Settings ─────────────────────────────────────────────────────────────


class TestSettings:
    @pytest.mark.asyncio
    async def test_disable_persists(self):
        engine, store, _ = _make_engine()
        await engine.add_strategy(RecordingStrategy("A"))

        assert await engine.disable_strategy("A") is True
        store.save_strategy_settings.assert_awaited_once_with(
            "system",
            "A",
            StrategySettings(
                user_id="system", strategy_name="A", is_enabled=False,
                parameters={"window": 3},
            )
        )

    @pytest.mark.asyncio
    async def test_enable_persists(self):
        engine, store, _ = _make_engine()
        strategy = RecordingStrategy("A")
        await engine.add_strategy(strategy)
        strategy.disable()

        assert await engine.enable_strategy("A") is True
        assert strategy.enabled is True
        saved = store.save_strategy_settings.await_args.args[2]
        assert saved.is_enabled is True

    @pytest.mark.asyncio
    async def test_update_parameters_merges_and_persists(self):
        engine, store, _ = _make_engine()
        await engine.add_strategy(RsiStrategy())

        assert await engine.update_parameters("RSI Strategy", {"rsi_period": 21}) is True
        strategy = engine.get_strategy("RSI Strategy")
        assert strategy.rsi_period == 21
        saved = store.save_strategy_settings.await_args.args[2]
        assert saved.parameters["rsi_period"] == 21
        assert saved.parameters["overbought_threshold"] == 70

    @pytest.mark.asyncio
    async def test_persist_failure_reports_false_without_rollback(self):
        store = _make_store()
        store.save_strategy_settings.side_effect = RuntimeError("read-only")
        engine, _, _ = _make_engine(store)
        strategy = RecordingStrategy("A")
        await engine.add_strategy(strategy)

        assert await engine.disable_strategy("A") is False
        # In-memory change is kept even though the save failed
        assert strategy.enabled is False

    @pytest.mark.asyncio
    async def test_unknown_strategy_returns_false(self):
        engine, store, _ = _make_engine()
        assert await engine.enable_strategy("Ghost") is False
        assert await engine.disable_strategy("Ghost") is False
        assert await engine.update_parameters("Ghost", {"x": 1}) is False
        store.save_strategy_settings.assert_not_awaited()
