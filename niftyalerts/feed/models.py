"""Feed data models — typed representations of streamed market ticks."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class IndexTick:
    """A single index observation (e.g. NIFTY 50)."""

    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    open: float
    close: float
    volume: int
    timestamp: datetime


@dataclass(frozen=True)
class OptionTick:
    """A single option-contract observation from the option chain."""

    symbol: str
    strike_price: float
    expiry_date: str
    option_type: str  # "CE" (call) or "PE" (put)
    last_price: float
    change: float
    change_percent: float
    volume: int
    open_interest: float
    open_interest_change: float
    implied_volatility: float
    bid_price: float
    ask_price: float
    underlying_value: float
    timestamp: datetime
