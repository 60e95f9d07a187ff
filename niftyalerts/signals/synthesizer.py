"""SignalSynthesizer — turns strategy results into deduplicated trade signals.

Filters results by confidence, suppresses repeats of the same
instrument/direction inside a cooldown window, derives price levels,
persists the signal and publishes it as ``EventType.SIGNAL``.
"""

import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Optional

from niftyalerts.events import EventBus, EventType
from niftyalerts.repos.store import PipelineStore
from niftyalerts.signals.pricing import MultiplierPricing, PricingModel
from niftyalerts.strategy.models import (
    BUY,
    SELL,
    IndicatorResult,
    StrategyResult,
    TradeSignal,
    clamp_confidence,
)

logger = logging.getLogger("niftyalerts.signals")

DEFAULT_SIGNAL_THRESHOLD = 70
DEFAULT_COOLDOWN_SECONDS = 15 * 60
DEFAULT_ENTRY_PRICE = 100.0
MAX_RECENT_SIGNALS = 100


def _format_indicator(indicator: IndicatorResult) -> str:
    value = indicator.value
    if isinstance(value, float):
        value = f"{value:.2f}"
    return f"{indicator.name}: {value}"


def build_reasoning(result: StrategyResult) -> str:
    """Compose the human-readable explanation attached to a signal."""
    reasoning = (
        f"{result.strategy_name} generated a {result.signal_type} signal for "
        f"{result.instrument} with {result.confidence}% confidence."
    )
    if result.indicators:
        reasoning += " Indicators: " + ", ".join(
            _format_indicator(i) for i in result.indicators
        )
    return reasoning


def parse_instrument(instrument: str) -> tuple[Optional[float], Optional[str]]:
    """Extract ``(strike, option_type)`` from labels like ``"NIFTY 22700 CE"``."""
    parts = instrument.split()
    if len(parts) < 2:
        return None, None
    option_type = parts[-1] if parts[-1] in ("CE", "PE") else None
    try:
        strike = float(parts[-2])
    except ValueError:
        strike = None
    return strike, option_type


class SignalSynthesizer:
    """Confidence filter, cooldown dedup and signal factory.

    Args:
        store: Persistence collaborator; save failures are logged only.
        bus: Event bus receiving ``SIGNAL`` events.
        signal_threshold: Minimum result confidence (0–100).
        cooldown_seconds: Suppression window per (instrument, direction).
        pricing: Price-level model. Defaults to ``MultiplierPricing``.
        default_entry_price: Reference price when a result carries none.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        store: PipelineStore,
        bus: EventBus,
        signal_threshold: int = DEFAULT_SIGNAL_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        pricing: Optional[PricingModel] = None,
        default_entry_price: float = DEFAULT_ENTRY_PRICE,
        max_recent: int = MAX_RECENT_SIGNALS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._bus = bus
        self._threshold = max(0, min(100, signal_threshold))
        self._cooldown_seconds = cooldown_seconds
        self._pricing = pricing or MultiplierPricing()
        self._default_entry_price = default_entry_price
        self._max_recent = max_recent
        self._clock = clock
        self._recent: OrderedDict[str, TradeSignal] = OrderedDict()
        self._cooldowns: dict[str, float] = {}

    @property
    def signal_threshold(self) -> int:
        return self._threshold

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown_seconds

    def set_signal_threshold(self, threshold: int) -> None:
        self._threshold = max(0, min(100, threshold))
        logger.info("Signal threshold set to %d", self._threshold)

    def set_cooldown_period(self, seconds: float) -> None:
        self._cooldown_seconds = seconds
        logger.info("Signal cooldown period set to %.0fs", seconds)

    def cooldown_remaining(self, instrument: str, signal_type: str) -> float:
        """Seconds left on the cooldown for this key (0 when inactive)."""
        until = self._cooldowns.get(f"{instrument}_{signal_type}")
        if until is None:
            return 0.0
        return max(0.0, until - self._clock())

    # ── Processing ───────────────────────────────────────────────────────

    async def process_strategy_result(self, result: StrategyResult) -> Optional[TradeSignal]:
        """Synthesize, persist and publish a signal for *result*.

        Returns the new ``TradeSignal`` or ``None`` when the result was
        filtered out.  Every check and the cooldown update happen before
        the first ``await``.
        """
        if result.signal_type not in (BUY, SELL):
            return None
        if result.confidence < self._threshold:
            logger.debug(
                "Confidence %d below threshold %d, ignoring %s",
                result.confidence, self._threshold, result.instrument,
            )
            return None

        now = self._clock()
        self._prune_cooldowns(now)
        cooldown_key = f"{result.instrument}_{result.signal_type}"
        cooldown_until = self._cooldowns.get(cooldown_key)
        if cooldown_until is not None and now < cooldown_until:
            logger.debug(
                "Signal for %s in cooldown until %s",
                cooldown_key,
                datetime.fromtimestamp(cooldown_until, tz=timezone.utc).isoformat(),
            )
            return None

        signal = self._build_signal(result)
        self._remember(signal)
        self._cooldowns[cooldown_key] = now + self._cooldown_seconds

        try:
            await self._store.insert_signal(signal)
        except Exception as exc:
            logger.error("Error saving trade signal %s: %s", signal.id, exc)

        self._bus.publish(EventType.SIGNAL, signal)
        logger.info(
            "Generated trade signal: %s %s at %.2f (%d%%)",
            signal.signal_type, signal.instrument, signal.entry_price, signal.confidence,
        )
        return signal

    # ── Queries ──────────────────────────────────────────────────────────

    def recent_signals(self) -> list[TradeSignal]:
        """Cached signals, newest first."""
        return sorted(
            self._recent.values(),
            key=lambda s: s.timestamp or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )

    def recent_signals_by_strategy(self, strategy_name: str) -> list[TradeSignal]:
        return [s for s in self.recent_signals() if s.strategy_name == strategy_name]

    def signal_by_id(self, signal_id: str) -> Optional[TradeSignal]:
        return self._recent.get(signal_id)

    # ── Internal ─────────────────────────────────────────────────────────

    def _build_signal(self, result: StrategyResult) -> TradeSignal:
        parsed_strike, parsed_type = parse_instrument(result.instrument)
        strike = result.strike_price if result.strike_price is not None else parsed_strike
        option_type = result.option_type or parsed_type or "CE"

        reference = result.reference_price or self._default_entry_price
        levels = self._pricing.levels(result.signal_type, reference)

        return TradeSignal(
            id=str(uuid.uuid4()),
            strategy_name=result.strategy_name,
            signal_type=result.signal_type,
            instrument=result.instrument,
            entry_price=levels.entry,
            target_price=levels.target,
            stop_loss_price=levels.stop_loss,
            confidence=clamp_confidence(result.confidence),
            reasoning=build_reasoning(result),
            indicators=list(result.indicators),
            timestamp=result.timestamp,
            expiry_date=result.expiry_date or "",
            strike_price=strike or 0.0,
            option_type=option_type,
            underlying_value=result.underlying_value or 0.0,
        )

    def _remember(self, signal: TradeSignal) -> None:
        self._recent[signal.id] = signal
        while len(self._recent) > self._max_recent:
            self._recent.popitem(last=False)

    def _prune_cooldowns(self, now: float) -> None:
        expired = [k for k, until in self._cooldowns.items() if until <= now]
        for key in expired:
            del self._cooldowns[key]
