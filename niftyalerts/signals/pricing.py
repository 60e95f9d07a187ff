"""Entry / target / stop-loss derivation for synthesized signals."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from niftyalerts.strategy.models import BUY


@dataclass(frozen=True)
class PriceLevels:
    entry: float
    target: float
    stop_loss: float


@runtime_checkable
class PricingModel(Protocol):
    """Anything that turns a direction and reference price into levels."""

    def levels(self, signal_type: str, reference_price: float) -> PriceLevels: ...


@dataclass(frozen=True)
class MultiplierPricing:
    """Fixed-multiplier levels around the reference premium.

    BUY:  target = price × 1.5, stop = price × 0.7
    SELL: target = price × 0.5, stop = price × 1.3

    Placeholder heuristic; not an option-pricing model.
    """

    buy_target: float = 1.5
    buy_stop: float = 0.7
    sell_target: float = 0.5
    sell_stop: float = 1.3

    def levels(self, signal_type: str, reference_price: float) -> PriceLevels:
        if signal_type == BUY:
            return PriceLevels(
                entry=reference_price,
                target=reference_price * self.buy_target,
                stop_loss=reference_price * self.buy_stop,
            )
        return PriceLevels(
            entry=reference_price,
            target=reference_price * self.sell_target,
            stop_loss=reference_price * self.sell_stop,
        )
