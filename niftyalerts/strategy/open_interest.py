"""Open-interest strategy — institutional positioning from OI build-up.

Tracks a rolling history per option contract and reads the latest
change in open interest together with the option's price move.
"""

import logging
from collections import deque
from typing import Optional, Sequence

from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.strategy.base import BaseStrategy
from niftyalerts.strategy.indicators import oi_change_percent
from niftyalerts.strategy.models import (
    BUY,
    NEUTRAL,
    SELL,
    IndicatorResult,
    StrategyResult,
    round_half_up,
)

logger = logging.getLogger("niftyalerts.strategy")

MIN_EMIT_CONFIDENCE = 70

# (option_type, oi_rising, price_rising) → (direction, base, cap)
#   CE, OI up,   price up   → fresh longs in calls        → bullish
#   CE, OI up,   price down → call writing                → bearish
#   CE, OI down, price up   → call writers covering       → bearish
#   CE, OI down, price down → call longs booking profits  → bullish
# Puts mirror calls.
_OI_DECISION_TABLE: dict[tuple[str, bool, bool], tuple[str, int, int]] = {
    ("CE", True, True): (BUY, 60, 95),
    ("CE", True, False): (SELL, 55, 90),
    ("CE", False, True): (SELL, 50, 85),
    ("CE", False, False): (BUY, 45, 80),
    ("PE", True, True): (SELL, 60, 95),
    ("PE", True, False): (BUY, 55, 90),
    ("PE", False, True): (BUY, 50, 85),
    ("PE", False, False): (SELL, 45, 80),
}


def classify_oi_change(
    option_type: str,
    oi_change_pct: float,
    price_rising: bool,
    volume_confirmed: bool,
    threshold: float = 20.0,
) -> tuple[str, int]:
    """Return ``(direction, confidence)`` for one OI observation.

    NEUTRAL with confidence 0 when ``|oi_change_pct|`` does not exceed
    *threshold*.  Volume confirmation adds 10 (max 100); its absence
    subtracts 10 (min 30).
    """
    if abs(oi_change_pct) <= threshold:
        return NEUTRAL, 0

    key = ("CE" if option_type == "CE" else "PE", oi_change_pct > 0, price_rising)
    direction, base, cap = _OI_DECISION_TABLE[key]
    confidence = min(cap, round_half_up(base + abs(oi_change_pct) / 2))

    if volume_confirmed:
        confidence = min(100, confidence + 10)
    else:
        confidence = max(30, confidence - 10)
    return direction, confidence


def _option_key(tick: OptionTick) -> str:
    return f"{tick.symbol}_{tick.strike_price}_{tick.option_type}"


class OpenInterestStrategy(BaseStrategy):
    """Significant OI change detector across the subscribed option chain."""

    name = "Open Interest Strategy"
    description = (
        "Identifies significant open interest changes in options to detect "
        "institutional positioning"
    )
    default_parameters = {
        "oi_change_threshold": 20,
        "lookback_period": 3,
        "volume_confirmation_threshold": 1.5,
        "max_history_per_option": 50,
    }

    def __init__(self, parameters: Optional[dict] = None) -> None:
        self._history: dict[str, deque[OptionTick]] = {}
        super().__init__(parameters)

    def _apply_parameters(self) -> None:
        self.oi_change_threshold = float(self._parameters["oi_change_threshold"])
        self.volume_multiplier = float(self._parameters["volume_confirmation_threshold"])
        self.max_history = int(self._parameters["max_history_per_option"])
        for key, history in self._history.items():
            if history.maxlen != self.max_history:
                self._history[key] = deque(history, maxlen=self.max_history)

    def history_for(self, tick: OptionTick) -> list[OptionTick]:
        return list(self._history.get(_option_key(tick), ()))

    def analyze_option(self, tick: OptionTick) -> None:
        key = _option_key(tick)
        history = self._history.setdefault(key, deque(maxlen=self.max_history))
        history.append(tick)
        self._evaluate(history)

    def analyze_batch(
        self,
        index_history: Sequence[IndexTick],
        option_history: Sequence[OptionTick],
    ) -> None:
        """Regroup *option_history* per contract and evaluate each newest pair."""
        if not option_history:
            return
        self._history.clear()
        for tick in sorted(option_history, key=lambda t: t.timestamp):
            key = _option_key(tick)
            self._history.setdefault(key, deque(maxlen=self.max_history)).append(tick)
        for history in list(self._history.values()):
            self._evaluate(history)

    def _evaluate(self, history: deque) -> None:
        if len(history) < 2:
            return
        current: OptionTick = history[-1]
        previous: OptionTick = history[-2]

        change_pct = oi_change_percent(previous.open_interest, current.open_interest)
        if change_pct is None:
            return
        volume_confirmed = current.volume > previous.volume * self.volume_multiplier
        price_rising = current.last_price > previous.last_price

        signal_type, confidence = classify_oi_change(
            current.option_type, change_pct, price_rising, volume_confirmed,
            threshold=self.oi_change_threshold,
        )
        if signal_type == NEUTRAL or confidence < MIN_EMIT_CONFIDENCE:
            return

        self.emit_result(
            StrategyResult(
                strategy_name=self.name,
                signal_type=signal_type,
                instrument=current.symbol,
                confidence=confidence,
                indicators=[
                    IndicatorResult(
                        name="OI_Change", value=change_pct, timestamp=current.timestamp,
                    ),
                    IndicatorResult(
                        name="Volume_Confirmation",
                        value=volume_confirmed,
                        timestamp=current.timestamp,
                    ),
                ],
                timestamp=current.timestamp,
                reference_price=current.last_price,
                strike_price=current.strike_price,
                option_type=current.option_type,
                expiry_date=current.expiry_date,
                underlying_value=current.underlying_value,
            )
        )
