"""Strategy registry — maps strategy names to classes.

Used by StrategyEngine to instantiate the default strategy set.
"""

from niftyalerts.strategy.base import BaseStrategy
from niftyalerts.strategy.open_interest import OpenInterestStrategy
from niftyalerts.strategy.rsi import RsiStrategy


STRATEGY_REGISTRY: dict[str, type[BaseStrategy]] = {
    RsiStrategy.name: RsiStrategy,
    OpenInterestStrategy.name: OpenInterestStrategy,
}


def get_strategy(name: str, parameters: dict | None = None) -> BaseStrategy:
    """Look up and instantiate a strategy by registry key.

    Raises ``KeyError`` if the strategy name is not registered.
    """
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[name](parameters)
