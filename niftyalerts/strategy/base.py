"""Strategy protocol and shared strategy behaviour.

Defines the interface that all strategies must implement, plus a small
base class carrying the enable flag, parameter merging and result
emission every concrete strategy needs.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.strategy.models import StrategyResult, clamp_confidence

logger = logging.getLogger("niftyalerts.strategy")

ResultListener = Callable[[StrategyResult], Any]


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all analysis strategies must satisfy."""

    name: str

    @property
    def enabled(self) -> bool: ...

    def enable(self) -> None: ...

    def disable(self) -> None: ...

    def set_parameters(self, parameters: dict) -> None: ...

    def on_result(self, listener: ResultListener) -> None: ...

    def remove_result_listener(self, listener: ResultListener) -> None: ...

    def process_index_tick(self, tick: IndexTick) -> None: ...

    def process_option_tick(self, tick: OptionTick) -> None: ...

    def process_batch(
        self,
        index_history: Sequence[IndexTick],
        option_history: Sequence[OptionTick],
    ) -> None: ...


class BaseStrategy:
    """Common plumbing for strategies.

    Subclasses set ``name``, ``description`` and ``default_parameters``
    and override whichever of :meth:`analyze`, :meth:`analyze_option` and
    :meth:`analyze_batch` they need; the others are no-ops.  Parameter
    changes are re-read through :meth:`_apply_parameters`.
    """

    name: str = ""
    description: str = ""
    default_parameters: dict = {}

    def __init__(self, parameters: Optional[dict] = None) -> None:
        self._parameters: dict = {**self.default_parameters, **(parameters or {})}
        self._enabled: bool = True
        self._listeners: list[ResultListener] = []
        self.last_result: Optional[StrategyResult] = None
        self._apply_parameters()

    # ── Settings ─────────────────────────────────────────────────────────

    @property
    def parameters(self) -> dict:
        return dict(self._parameters)

    def set_parameters(self, parameters: dict) -> None:
        self._parameters = {**self._parameters, **parameters}
        self._apply_parameters()
        logger.debug("Strategy %s parameters updated: %s", self.name, parameters)

    def _apply_parameters(self) -> None:
        """Hook: copy parameters into typed attributes."""

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Strategy %s enabled", self.name)

    def disable(self) -> None:
        self._enabled = False
        logger.info("Strategy %s disabled", self.name)

    # ── Input ────────────────────────────────────────────────────────────

    def process_index_tick(self, tick: IndexTick) -> None:
        if not self._enabled:
            return
        self.analyze(tick)

    def process_option_tick(self, tick: OptionTick) -> None:
        if not self._enabled:
            return
        self.analyze_option(tick)

    def process_batch(
        self,
        index_history: Sequence[IndexTick],
        option_history: Sequence[OptionTick],
    ) -> None:
        if not self._enabled:
            return
        self.analyze_batch(index_history, option_history)

    def analyze(self, tick: IndexTick) -> None:
        pass

    def analyze_option(self, tick: OptionTick) -> None:
        pass

    def analyze_batch(
        self,
        index_history: Sequence[IndexTick],
        option_history: Sequence[OptionTick],
    ) -> None:
        pass

    # ── Output ───────────────────────────────────────────────────────────

    def on_result(self, listener: ResultListener) -> None:
        """Add *listener*; registering the same listener twice has no effect."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_result_listener(self, listener: ResultListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit_result(self, result: StrategyResult) -> None:
        """Record *result* as ``last_result`` and hand it to every listener."""
        result = dataclasses.replace(
            result, confidence=clamp_confidence(result.confidence),
        )
        self.last_result = result
        logger.debug(
            "Strategy %s emitted %s %s (%d%%)",
            self.name, result.signal_type, result.instrument, result.confidence,
        )
        for listener in list(self._listeners):
            listener(result)
