"""RSI reversal strategy — overbought/oversold conditions on the index.

Keeps a bounded history of index prices, computes Wilder RSI once more
than ``rsi_period`` prices are held, and suggests an at-the-money call
(BUY) or put (SELL) when RSI leaves or sits in an extreme zone.
"""

import logging
from collections import deque
from typing import Sequence

from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.strategy.base import BaseStrategy
from niftyalerts.strategy.indicators import calculate_rsi
from niftyalerts.strategy.models import (
    BUY,
    NEUTRAL,
    SELL,
    IndicatorResult,
    StrategyResult,
    round_half_up,
)

logger = logging.getLogger("niftyalerts.strategy")

MIN_EMIT_CONFIDENCE = 50


def classify_rsi(
    previous: float,
    current: float,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> tuple[str, int]:
    """Map a (previous, current) RSI pair to a direction and confidence.

    Rules, in priority order:
        - fresh cross up out of oversold → BUY, 50 + 2 × depth, max 100
        - fresh cross down out of overbought → SELL, 50 + 2 × height, max 100
        - still oversold → BUY, 40 − depth, min 30
        - still overbought → SELL, 40 − height, min 30
        - otherwise NEUTRAL with confidence 0
    """
    if previous < oversold <= current:
        return BUY, min(100, round_half_up(50 + (oversold - previous) * 2))
    if previous > overbought >= current:
        return SELL, min(100, round_half_up(50 + (previous - overbought) * 2))
    if current < oversold:
        return BUY, max(30, round_half_up(40 - (oversold - current)))
    if current > overbought:
        return SELL, max(30, round_half_up(40 - (current - overbought)))
    return NEUTRAL, 0


def atm_instrument(price: float, signal_type: str) -> tuple[str, int, str]:
    """Return ``(label, strike, option_type)`` for the at-the-money contract."""
    strike = round_half_up(price / 100) * 100
    option_type = "CE" if signal_type == BUY else "PE"
    return f"NIFTY {strike} {option_type}", strike, option_type


class RsiStrategy(BaseStrategy):
    """Index RSI overbought/oversold strategy."""

    name = "RSI Strategy"
    description = (
        "Identifies overbought/oversold conditions in the Nifty index "
        "using the RSI indicator"
    )
    default_parameters = {
        "rsi_period": 14,
        "overbought_threshold": 70,
        "oversold_threshold": 30,
        "signal_confirmation_period": 2,
    }

    def __init__(self, parameters: dict | None = None) -> None:
        self._prices: deque[float] = deque(maxlen=100)
        super().__init__(parameters)

    def _apply_parameters(self) -> None:
        self.rsi_period = int(self._parameters["rsi_period"])
        self.overbought = float(self._parameters["overbought_threshold"])
        self.oversold = float(self._parameters["oversold_threshold"])
        self.max_history = max(100, self.rsi_period * 3)
        if self._prices.maxlen != self.max_history:
            self._prices = deque(self._prices, maxlen=self.max_history)

    @property
    def price_history(self) -> list[float]:
        return list(self._prices)

    def analyze(self, tick: IndexTick) -> None:
        self._prices.append(tick.price)
        self._evaluate(tick)

    def analyze_batch(
        self,
        index_history: Sequence[IndexTick],
        option_history: Sequence[OptionTick],
    ) -> None:
        """Rebuild price history from *index_history* and evaluate the newest tick."""
        if not index_history:
            return
        ordered = sorted(index_history, key=lambda t: t.timestamp)
        self._prices = deque((t.price for t in ordered), maxlen=self.max_history)
        self._evaluate(ordered[-1])

    def _evaluate(self, tick: IndexTick) -> None:
        if len(self._prices) <= self.rsi_period:
            logger.debug(
                "RSI Strategy: not enough price history (%d/%d)",
                len(self._prices), self.rsi_period + 1,
            )
            return

        rsi_values = calculate_rsi(list(self._prices), self.rsi_period)
        current = rsi_values[-1]
        previous = rsi_values[-2] if len(rsi_values) > 1 else current

        signal_type, confidence = classify_rsi(
            previous, current, self.oversold, self.overbought,
        )
        if signal_type == NEUTRAL or confidence < MIN_EMIT_CONFIDENCE:
            return

        label, strike, option_type = atm_instrument(tick.price, signal_type)
        self.emit_result(
            StrategyResult(
                strategy_name=self.name,
                signal_type=signal_type,
                instrument=label,
                confidence=confidence,
                indicators=[
                    IndicatorResult(name="RSI", value=current, timestamp=tick.timestamp),
                ],
                timestamp=tick.timestamp,
                strike_price=float(strike),
                option_type=option_type,
                underlying_value=tick.price,
            )
        )
