"""Technical indicators — RSI and open-interest change. Pure functions, no I/O."""

from typing import Optional, Sequence


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(prices: Sequence[float], period: int = 14) -> list[float]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = price[i] - price[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = SMA of first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RS = avg_gain / avg_loss
        6. RSI = 100 - 100 / (1 + RS)

    Requires at least ``period + 1`` prices.

    Returns only the defined RSI values, oldest-first
    (``len(prices) - period`` entries).
    """
    if len(prices) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} prices for RSI({period}), "
            f"got {len(prices)}"
        )

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    def _rsi_from_avgs(ag: float, al: float) -> float:
        if al == 0:
            return 100.0
        rs = ag / al
        return 100.0 - 100.0 / (1.0 + rs)

    rsi: list[float] = [_rsi_from_avgs(avg_gain, avg_loss)]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi.append(_rsi_from_avgs(avg_gain, avg_loss))

    return rsi


# ── Open interest ────────────────────────────────────────────────────────


def oi_change_percent(previous_oi: float, current_oi: float) -> Optional[float]:
    """Percentage change in open interest, or ``None`` when *previous_oi* is 0."""
    if previous_oi == 0:
        return None
    return (current_oi - previous_oi) / previous_oi * 100.0
