"""DataIngestor — raw feed payloads to typed ticks.

Parses JSON messages from ``FeedConnection``, builds ``IndexTick`` /
``OptionTick`` values, persists them in the background and republishes
them on the event bus.  Bad payloads are logged and dropped.
"""

import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional, Union

from niftyalerts.events import EventBus, EventType
from niftyalerts.feed.models import IndexTick, OptionTick
from niftyalerts.repos.store import PipelineStore

logger = logging.getLogger("niftyalerts.feed")

Tick = Union[IndexTick, OptionTick]

CHAIN_STRIKE_STEP = 100


def parse_timestamp(value: Any) -> datetime:
    """Feed timestamps: epoch milliseconds or ISO-8601; missing → now (UTC)."""
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise TypeError(f"Unsupported timestamp {value!r}")


def _number(data: dict, key: str, default: Optional[float] = None) -> float:
    """Finite numeric field; booleans, non-numeric strings, NaN and ±inf raise."""
    if key not in data:
        if default is None:
            raise KeyError(key)
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TypeError(f"{key} is not numeric: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{key} is not finite: {value!r}")
    return number


def _option_type(raw: Any) -> str:
    return "CE" if str(raw).lower() in ("call", "ce") else "PE"


class DataIngestor:
    """Normalises feed messages and fans them out.

    Args:
        store: Persistence collaborator; writes are fire-and-forget.
        bus: Event bus receiving ``INDEX_TICK`` / ``OPTION_TICK``.
        index_symbol: Symbol identifying index (not option) payloads.
        chain_band: Points either side of the snapped underlying price
            covered by ``latest_option_chain``.
    """

    def __init__(
        self,
        store: PipelineStore,
        bus: EventBus,
        index_symbol: str = "NSE:NIFTY50",
        chain_band: int = 500,
    ) -> None:
        self._store = store
        self._bus = bus
        self._index_symbol = index_symbol
        self._chain_band = chain_band
        self._pending: set[asyncio.Task] = set()

    # ── Parsing ──────────────────────────────────────────────────────────

    def parse_message(self, raw: Union[str, bytes]) -> Optional[Tick]:
        """Return the tick carried by *raw*, or ``None`` if it carries none."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Dropping unparseable feed message: %s", exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Dropping feed message that is not an object")
            return None

        msg_type = data.get("type")
        if msg_type == "heartbeat":
            return None
        if msg_type != "marketData":
            logger.debug("Ignoring feed message of type %s", msg_type)
            return None

        try:
            if data.get("symbol") == self._index_symbol:
                return self._index_tick(data)
            if data.get("instrumentType") == "option":
                return self._option_tick(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Dropping malformed market data for %s: %s", data.get("symbol"), exc,
            )
            return None

        logger.debug("Ignoring market data for %s", data.get("symbol"))
        return None

    def _index_tick(self, data: dict) -> IndexTick:
        return IndexTick(
            symbol=data["symbol"],
            price=_number(data, "ltp"),
            change=_number(data, "change", 0.0),
            change_percent=_number(data, "changePercent", 0.0),
            high=_number(data, "high", 0.0),
            low=_number(data, "low", 0.0),
            open=_number(data, "open", 0.0),
            close=_number(data, "close", 0.0),
            volume=int(_number(data, "volume", 0.0)),
            timestamp=parse_timestamp(data.get("timestamp")),
        )

    def _option_tick(self, data: dict) -> OptionTick:
        return OptionTick(
            symbol=data["symbol"],
            strike_price=_number(data, "strikePrice"),
            expiry_date=str(data.get("expiry", "")),
            option_type=_option_type(data.get("optionType")),
            last_price=_number(data, "ltp"),
            change=_number(data, "change", 0.0),
            change_percent=_number(data, "changePercent", 0.0),
            volume=int(_number(data, "volume", 0.0)),
            open_interest=_number(data, "openInterest", 0.0),
            open_interest_change=_number(data, "openInterestChange", 0.0),
            implied_volatility=_number(data, "impliedVolatility", 0.0),
            bid_price=_number(data, "bidPrice", 0.0),
            ask_price=_number(data, "askPrice", 0.0),
            underlying_value=_number(data, "underlyingValue", 0.0),
            timestamp=parse_timestamp(data.get("timestamp")),
        )

    # ── Handling ─────────────────────────────────────────────────────────

    def handle_message(self, raw: Union[str, bytes]) -> Optional[Tick]:
        """Parse, persist in the background and publish one feed message.

        Must be called from inside the running event loop.
        """
        tick = self.parse_message(raw)
        if tick is None:
            return None

        task = asyncio.get_running_loop().create_task(self._save(tick))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        if isinstance(tick, IndexTick):
            self._bus.publish(EventType.INDEX_TICK, tick)
        else:
            self._bus.publish(EventType.OPTION_TICK, tick)
        return tick

    async def drain(self) -> None:
        """Wait for outstanding tick writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _save(self, tick: Tick) -> None:
        try:
            await self._store.insert_tick(tick)
        except Exception as exc:
            logger.error("Error saving tick for %s: %s", tick.symbol, exc)

    # ── Queries ──────────────────────────────────────────────────────────

    async def latest_index_price(self) -> Optional[float]:
        """Latest persisted index price, ``None`` if unknown or unreadable."""
        try:
            return await self._store.find_latest_index_price()
        except Exception as exc:
            logger.error("Error reading latest index price: %s", exc)
            return None

    async def latest_option_chain(
        self,
        expiry_date: str,
        band: Optional[int] = None,
    ) -> list[OptionTick]:
        """Persisted option ticks for *expiry_date* near the current price.

        The strike range is the underlying price snapped outward to the
        nearest 100 and widened by *band* points on each side.
        """
        price = await self.latest_index_price()
        if not price:
            return []
        band = self._chain_band if band is None else band
        lower = math.floor(price / CHAIN_STRIKE_STEP) * CHAIN_STRIKE_STEP - band
        upper = math.ceil(price / CHAIN_STRIKE_STEP) * CHAIN_STRIKE_STEP + band
        try:
            return await self._store.find_option_chain(expiry_date, (lower, upper))
        except Exception as exc:
            logger.error("Error reading option chain for %s: %s", expiry_date, exc)
            return []
