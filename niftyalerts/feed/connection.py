"""Resilient streaming connection to the market-data feed.

Owns authentication, subscription, heartbeat and reconnection.  Raw
inbound messages (other than heartbeats) are handed to the registered
``on_message`` handlers; parsing belongs to ``DataIngestor``.

State machine::

    DISCONNECTED → AUTHENTICATING → CONNECTED → SUBSCRIBED
         ↑                                          │ close / error
         └────────── RECONNECT_WAIT ←───────────────┘
                          │ attempts exhausted
                          ↓
                        FAILED (terminal)
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from niftyalerts.config import Config
from niftyalerts.strategy.models import round_half_up

logger = logging.getLogger("niftyalerts.feed")

DEFAULT_FEED_TYPES = ("marketData", "depthData")


class FeedAuthError(Exception):
    """The feed's auth endpoint did not return a usable token."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    RECONNECT_WAIT = "reconnect_wait"
    FAILED = "failed"


def reconnect_delay(attempt: int, base_interval: float) -> float:
    """Backoff before reconnect *attempt* (1-based): base × 1.5^(attempt − 1)."""
    return base_interval * 1.5 ** (attempt - 1)


def build_option_symbols(
    underlying: Optional[float],
    expiry_code: str,
    strike_step: int = 50,
    band: int = 250,
) -> list[str]:
    """Option symbols for every strike within *band* points of *underlying*.

    Strikes sit on multiples of *strike_step* around the at-the-money
    strike; each strike yields a CE and a PE symbol, e.g.
    ``NSE:NIFTY25JUN22500CE``.  Empty when the expiry code or the
    underlying price is unknown.
    """
    if not expiry_code or not underlying or underlying <= 0:
        return []
    atm = round_half_up(underlying / strike_step) * strike_step
    symbols = []
    for strike in range(atm - band, atm + band + 1, strike_step):
        if strike <= 0:
            continue
        for option_type in ("CE", "PE"):
            symbols.append(f"NSE:NIFTY{expiry_code}{strike}{option_type}")
    return symbols


Authenticator = Callable[[], Awaitable[str]]
Connector = Callable[[str, str], Awaitable[Any]]


class FeedConnection:
    """Single long-lived websocket connection with backoff reconnect.

    Args:
        api_key / api_secret: Credentials posted to *auth_url*.
        auth_url: Login endpoint returning ``{"token": ...}``.
        ws_url: Websocket endpoint of the feed.
        index_symbol: Index subscribed on every (re)connect.
        option_expiry_code: Expiry fragment of option symbols; empty
            disables option subscriptions.
        strike_step / subscription_band: Strike grid and band used to
            pick option symbols around the latest underlying price.
        reconnect_interval: Base backoff in seconds, also the fixed
            auth-retry delay.
        max_reconnect_attempts: Attempts before entering ``FAILED``.
        heartbeat_interval / heartbeat_timeout: Heartbeat period and the
            silence after which a hard reconnect is forced.
        underlying_provider: Async callable returning the latest index
            price (or ``None``).
        authenticator: Async callable returning a token.  Defaults to an
            HTTP login against *auth_url*.
        connector: Async callable ``(url, token) → websocket``.  Defaults
            to ``websockets.connect``.
        sleep: Awaitable used for reconnect and auth-retry delays.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        auth_url: str,
        ws_url: str,
        index_symbol: str = "NSE:NIFTY50",
        option_expiry_code: str = "",
        strike_step: int = 50,
        subscription_band: int = 250,
        reconnect_interval: float = 5.0,
        max_reconnect_attempts: int = 10,
        heartbeat_interval: float = 15.0,
        heartbeat_timeout: float = 30.0,
        underlying_provider: Optional[Callable[[], Awaitable[Optional[float]]]] = None,
        authenticator: Optional[Authenticator] = None,
        connector: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._auth_url = auth_url
        self._ws_url = ws_url
        self._index_symbol = index_symbol
        self._option_expiry_code = option_expiry_code
        self._strike_step = strike_step
        self._subscription_band = subscription_band
        self._reconnect_interval = reconnect_interval
        self._max_reconnect_attempts = max_reconnect_attempts
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._underlying_provider = underlying_provider
        self._authenticator = authenticator or self._login
        self._connector = connector or self._open_websocket
        self._sleep = sleep
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._is_connected = False
        self._connecting = False
        self._closed = False
        self._token: Optional[str] = None
        self._ws: Any = None
        self._reconnect_attempts = 0
        self._last_heartbeat_at = 0.0

        self._message_handlers: list[Callable[[str], None]] = []
        self._fatal_handlers: list[Callable[[str], None]] = []

        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._hard_reconnect_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        underlying_provider: Optional[Callable[[], Awaitable[Optional[float]]]] = None,
    ) -> "FeedConnection":
        return cls(
            api_key=config.upstox_api_key,
            api_secret=config.upstox_api_secret,
            auth_url=config.feed_auth_url,
            ws_url=config.feed_ws_url,
            index_symbol=config.index_symbol,
            option_expiry_code=config.option_expiry_code,
            strike_step=config.strike_step,
            subscription_band=config.subscription_band,
            reconnect_interval=config.reconnect_interval_seconds,
            max_reconnect_attempts=config.max_reconnect_attempts,
            heartbeat_interval=config.heartbeat_interval_seconds,
            heartbeat_timeout=config.heartbeat_timeout_seconds,
            underlying_provider=underlying_provider,
        )

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def last_heartbeat_at(self) -> float:
        return self._last_heartbeat_at

    # ── Handlers ─────────────────────────────────────────────────────────

    def on_message(self, handler: Callable[[str], None]) -> None:
        """Register a handler for every non-heartbeat inbound message."""
        self._message_handlers.append(handler)

    def on_fatal(self, handler: Callable[[str], None]) -> None:
        """Register a handler fired once when reconnect attempts run out."""
        self._fatal_handlers.append(handler)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Authenticate, open the websocket and subscribe.

        A no-op while connected, while another ``connect()`` is in flight,
        after ``shutdown()`` and once the connection has ``FAILED``.  A
        reconnect waiting on its backoff is cancelled in favour of this
        attempt.
        """
        if self._connecting or self._closed or self._state == ConnectionState.FAILED:
            return
        if self._is_connected:
            logger.debug("Feed already connected; ignoring connect()")
            return
        pending = self._reconnect_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            pending.cancel()
            self._reconnect_task = None
        self._connecting = True
        try:
            if not await self._authenticate():
                return
            try:
                ws = await self._connector(self._ws_url, self._token)
            except Exception as exc:
                logger.error("Feed connection to %s failed: %s", self._ws_url, exc)
                self._state = ConnectionState.DISCONNECTED
                self._schedule_reconnect()
                return
            if self._closed:
                await ws.close()
                return
            await self._on_open(ws)
        finally:
            self._connecting = False

    async def subscribe(
        self,
        symbols: Sequence[str],
        feed_types: Sequence[str] = DEFAULT_FEED_TYPES,
    ) -> bool:
        """Send a subscription request; ``False`` when not connected."""
        if not self._is_connected or self._ws is None:
            logger.warning("Cannot subscribe to %d symbols: feed not connected", len(symbols))
            return False
        message = {"type": "subscribe", "symbols": list(symbols), "feeds": list(feed_types)}
        try:
            await self._ws.send(json.dumps(message))
        except Exception as exc:
            logger.error("Subscription request failed: %s", exc)
            return False
        logger.info("Subscribed to %d symbols", len(symbols))
        return True

    async def hard_reconnect(self) -> None:
        """Tear down the transport and connect again immediately."""
        logger.warning("Forcing hard reconnect of feed connection")
        self._is_connected = False
        self._stop_heartbeat()
        self._cancel(self._reader_task)
        self._reader_task = None
        await self._close_transport()
        self._state = ConnectionState.DISCONNECTED
        await self.connect()

    async def shutdown(self) -> None:
        """Stop timers, cancel pending reconnects and close the transport."""
        self._closed = True
        self._is_connected = False
        self._stop_heartbeat()
        for task in (self._reader_task, self._reconnect_task, self._hard_reconnect_task):
            self._cancel(task)
        self._reader_task = None
        self._reconnect_task = None
        self._hard_reconnect_task = None
        await self._close_transport()
        if self._state != ConnectionState.FAILED:
            self._state = ConnectionState.DISCONNECTED
        logger.info("Feed connection shut down")

    # ── Authentication ───────────────────────────────────────────────────

    async def _authenticate(self) -> bool:
        """Retry authentication at a fixed interval until it succeeds.

        Auth retries do not count as reconnect attempts.  Returns
        ``False`` only when the connection was shut down meanwhile.
        """
        while not self._closed:
            self._state = ConnectionState.AUTHENTICATING
            try:
                self._token = await self._authenticator()
                logger.info("Authenticated with market-data feed")
                return True
            except Exception as exc:
                logger.error(
                    "Feed authentication failed: %s; retrying in %.1fs",
                    exc, self._reconnect_interval,
                )
                await self._sleep(self._reconnect_interval)
        return False

    async def _login(self) -> str:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                self._auth_url,
                json={"apiKey": self._api_key, "apiSecret": self._api_secret},
                timeout=30.0,
            )
        resp.raise_for_status()
        body = resp.json()
        token = body.get("token")
        if not token and isinstance(body.get("data"), dict):
            token = body["data"].get("token")
        if not token:
            raise FeedAuthError("Auth response did not include a token")
        return token

    async def _open_websocket(self, url: str, token: str):
        return await websockets.connect(
            url, additional_headers={"Authorization": f"Bearer {token}"},
        )

    # ── Connected ────────────────────────────────────────────────────────

    async def _on_open(self, ws) -> None:
        self._ws = ws
        self._is_connected = True
        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        self._last_heartbeat_at = self._clock()
        logger.info("Connected to market-data feed")

        if await self.subscribe(await self._subscription_symbols()):
            self._state = ConnectionState.SUBSCRIBED

        self._start_heartbeat()
        self._reader_task = asyncio.create_task(self._read_loop(ws))

    async def _subscription_symbols(self) -> list[str]:
        underlying = None
        if self._underlying_provider is not None:
            try:
                underlying = await self._underlying_provider()
            except Exception as exc:
                logger.error("Could not fetch underlying price for subscriptions: %s", exc)
        options = build_option_symbols(
            underlying, self._option_expiry_code,
            self._strike_step, self._subscription_band,
        )
        return [self._index_symbol, *options]

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as exc:
            logger.warning("Feed connection closed: %s", exc)
        except Exception as exc:
            logger.error("Feed connection error: %s", exc)
        if not self._closed and self._ws is ws:
            self._handle_close()

    def _dispatch(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("type") == "heartbeat":
            self._last_heartbeat_at = self._clock()
            return
        for handler in list(self._message_handlers):
            try:
                handler(raw)
            except Exception as exc:
                logger.error("Feed message handler failed: %s", exc)

    def _handle_close(self) -> None:
        logger.info("Disconnected from market-data feed")
        self._is_connected = False
        self._stop_heartbeat()
        self._ws = None
        self._reader_task = None
        self._state = ConnectionState.DISCONNECTED
        self._schedule_reconnect()

    # ── Reconnect ────────────────────────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_attempts >= self._max_reconnect_attempts:
            self._fail()
            return
        self._reconnect_attempts += 1
        delay = reconnect_delay(self._reconnect_attempts, self._reconnect_interval)
        self._state = ConnectionState.RECONNECT_WAIT
        logger.info(
            "Reconnecting to feed in %.2fs (attempt %d/%d)",
            delay, self._reconnect_attempts, self._max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        await self.connect()

    def _fail(self) -> None:
        self._state = ConnectionState.FAILED
        self._is_connected = False
        reason = "max reconnect attempts reached"
        logger.critical(
            "Feed connection failed: %s (%d)", reason, self._max_reconnect_attempts,
        )
        for handler in list(self._fatal_handlers):
            try:
                handler(reason)
            except Exception as exc:
                logger.error("Fatal handler failed: %s", exc)

    # ── Heartbeat ────────────────────────────────────────────────────────

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        self._cancel(task)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            if not await self._heartbeat_tick():
                return

    async def _heartbeat_tick(self) -> bool:
        """Send one heartbeat and run the watchdog.

        Returns ``False`` when the loop should stop (not connected, or a
        hard reconnect was started).
        """
        if not self._is_connected or self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps({"type": "heartbeat"}))
        except Exception as exc:
            logger.warning("Heartbeat send failed: %s", exc)

        silence = self._clock() - self._last_heartbeat_at
        if silence > self._heartbeat_timeout:
            logger.warning("No heartbeat from feed for %.0fs", silence)
            # Runs outside the heartbeat task so stopping the heartbeat
            # does not cancel the reconnect itself.
            self._hard_reconnect_task = asyncio.create_task(self.hard_reconnect())
            return False
        return True

    # ── Internal ─────────────────────────────────────────────────────────

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _close_transport(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as exc:
            logger.warning("Error closing feed transport: %s", exc)
