"""Strategy data models — typed representations for strategy and signal outputs."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

IndicatorValue = Union[float, int, bool, str]

BUY = "BUY"
SELL = "SELL"
NEUTRAL = "NEUTRAL"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero for positives (72.5 → 73)."""
    return int(math.floor(value + 0.5))


def clamp_confidence(value: float) -> int:
    """Clamp a confidence score into the closed range [0, 100]."""
    return max(0, min(100, round_half_up(value)))


@dataclass(frozen=True)
class IndicatorResult:
    """One named analysis artifact attached to a strategy result."""

    name: str
    value: IndicatorValue
    timestamp: datetime


@dataclass(frozen=True)
class StrategyResult:
    """A directional conclusion emitted by one strategy.

    The optional contract fields are filled in by strategies that know
    them (the open-interest strategy sees the option tick directly); the
    synthesizer falls back to parsing ``instrument`` otherwise.
    """

    strategy_name: str
    signal_type: str  # "BUY", "SELL" or "NEUTRAL"
    instrument: str  # e.g. "NIFTY 22700 CE"
    confidence: int
    indicators: list[IndicatorResult]
    timestamp: datetime
    reference_price: Optional[float] = None
    strike_price: Optional[float] = None
    option_type: Optional[str] = None
    expiry_date: Optional[str] = None
    underlying_value: Optional[float] = None


@dataclass(frozen=True)
class TradeSignal:
    """An actionable, deduplicated trade alert."""

    id: str
    strategy_name: str
    signal_type: str  # "BUY" or "SELL"
    instrument: str
    entry_price: float
    target_price: float
    stop_loss_price: float
    confidence: int
    reasoning: str
    indicators: list[IndicatorResult] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    expiry_date: str = ""
    strike_price: float = 0.0
    option_type: str = "CE"
    underlying_value: float = 0.0
