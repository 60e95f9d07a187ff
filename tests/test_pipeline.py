"""End-to-end tests for AlertPipeline wiring and lifecycle."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from niftyalerts.alerts.dispatcher import AlertDispatcher
from niftyalerts.config import Config
from niftyalerts.events import EventType
from niftyalerts.feed.connection import ConnectionState, FeedConnection
from niftyalerts.feed.models import IndexTick
from niftyalerts.models.subscriber import AlertConfig
from niftyalerts.pipeline import AlertPipeline
from niftyalerts.repos.db import init_db
from niftyalerts.repos.store import PipelineStore
from niftyalerts.strategy.models import BUY

_T0 = datetime(2025, 6, 10, 9, 15, tzinfo=timezone.utc)
_BOUNCE = [22140.0 - 10 * i for i in range(15)] + [22060.0]


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(db_path: str, **overrides) -> Config:
    defaults = dict(
        upstox_api_key="key",
        upstox_api_secret="secret",
        feed_auth_url="https://auth.test/login",
        feed_ws_url="wss://feed.test/stream",
        index_symbol="NSE:NIFTY50",
        option_expiry_code="",
        strike_step=50,
        subscription_band=250,
        option_chain_band=500,
        reconnect_interval_seconds=5.0,
        max_reconnect_attempts=10,
        heartbeat_interval_seconds=15.0,
        heartbeat_timeout_seconds=30.0,
        signal_threshold=70,
        signal_cooldown_seconds=900.0,
        telegram_bot_token="",
        telegram_api_url="https://api.telegram.org",
        twilio_account_sid="",
        twilio_auth_token="",
        twilio_from_number="",
        twilio_whatsapp=True,
        smtp_host="",
        smtp_port=587,
        smtp_username="",
        smtp_password="",
        smtp_from="",
        smtp_use_tls=True,
        db_path=db_path,
        log_level="INFO",
        http_port=4000,
        strategy_user_id="system",
    )
    defaults.update(overrides)
    return Config(**defaults)


class FakeFeed:
    """Feed stand-in; ``emit`` plays the role of the websocket reader."""

    def __init__(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.is_connected = False
        self.reconnect_attempts = 0
        self.connected = False
        self.shut_down = False
        self._handlers = []
        self._fatal_handlers = []

    def on_message(self, handler) -> None:
        self._handlers.append(handler)

    def on_fatal(self, handler) -> None:
        self._fatal_handlers.append(handler)

    async def connect(self) -> None:
        self.connected = True
        self.is_connected = True
        self.state = ConnectionState.SUBSCRIBED

    async def shutdown(self) -> None:
        self.shut_down = True

    def emit(self, raw: str) -> None:
        for handler in self._handlers:
            handler(raw)

    def fail(self, reason: str) -> None:
        for handler in self._fatal_handlers:
            handler(reason)


class FakeChannel:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, destination, message, signal):
        self.sent.append((destination, signal.instrument))


def _index_message(price: float, minute: int) -> str:
    return json.dumps({
        "type": "marketData",
        "symbol": "NSE:NIFTY50",
        "ltp": price,
        "timestamp": (_T0 + timedelta(minutes=minute)).isoformat(),
    })


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "pipeline.db")
    init_db(path)
    return path


async def _pipeline_with_subscriber(db_path: str):
    store = PipelineStore(db_path)
    await store.upsert_alert_config(AlertConfig("u1", email_address="trader@example.in"))
    email = FakeChannel()
    feed = FakeFeed()
    pipeline = AlertPipeline(
        _make_config(db_path),
        store=store,
        feed=feed,
        dispatcher=AlertDispatcher(store, email=email),
    )
    return pipeline, feed, email


# ── Tests ────────────────────────────────────────────────────────────────


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_oversold_bounce_reaches_subscriber(self, db_path):
        pipeline, feed, email = await _pipeline_with_subscriber(db_path)
        emitted = []
        pipeline.bus.subscribe(EventType.SIGNAL, emitted.append)
        await pipeline.start()
        assert feed.connected

        for minute, price in enumerate(_BOUNCE):
            feed.emit(_index_message(price, minute))
        await pipeline.ingestor.drain()
        await pipeline.bus.drain()

        assert len(emitted) == 1
        signal = emitted[0]
        assert signal.signal_type == BUY
        assert signal.instrument == "NIFTY 22100 CE"
        assert signal.confidence == 100
        assert email.sent == [("trader@example.in", "NIFTY 22100 CE")]

        assert await pipeline.store.find_latest_index_price() == 22060.0
        assert await pipeline.store.find_signal_by_id(signal.id) == signal

        pipeline.stop()
        await pipeline.shutdown()
        assert feed.shut_down

    @pytest.mark.asyncio
    async def test_warm_up_replays_persisted_ticks(self, db_path):
        store = PipelineStore(db_path)
        for minute, price in enumerate(_BOUNCE):
            await store.insert_tick(IndexTick(
                "NSE:NIFTY50", price, 0.0, 0.0, price, price, price, price, 0,
                _T0 + timedelta(minutes=minute),
            ))
        pipeline, feed, email = await _pipeline_with_subscriber(db_path)

        await pipeline.start()
        await pipeline.bus.drain()

        signals = pipeline.synthesizer.recent_signals()
        assert [s.instrument for s in signals] == ["NIFTY 22100 CE"]
        assert email.sent == [("trader@example.in", "NIFTY 22100 CE")]

    @pytest.mark.asyncio
    async def test_status_reports_components(self, db_path):
        pipeline, feed, _ = await _pipeline_with_subscriber(db_path)
        await pipeline.start()

        status = pipeline.status()
        assert status["feed_state"] == "subscribed"
        assert status["feed_connected"] is True
        assert [s["name"] for s in status["strategies"]] == [
            "RSI Strategy", "Open Interest Strategy",
        ]
        assert status["signal_threshold"] == 70
        assert status["live_clients"] == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_exits_cleanly(self, db_path):
        pipeline, feed, _ = await _pipeline_with_subscriber(db_path)
        runner = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)
        pipeline.stop()
        assert await asyncio.wait_for(runner, timeout=5) == 0
        assert feed.shut_down

    @pytest.mark.asyncio
    async def test_feed_fatal_stops_with_error_code(self, db_path):
        pipeline, feed, _ = await _pipeline_with_subscriber(db_path)
        fatal = []
        pipeline.bus.subscribe(EventType.FEED_FATAL, fatal.append)
        runner = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)

        feed.fail("max reconnect attempts reached")
        assert await asyncio.wait_for(runner, timeout=5) == 1
        assert fatal == ["max reconnect attempts reached"]

    @pytest.mark.asyncio
    async def test_exhausted_reconnects_end_the_run(self, db_path):
        calls = []

        async def _auth():
            return "token"

        async def _refuse(url, token):
            calls.append(url)
            raise OSError("connection refused")

        async def _instant(seconds):
            return None

        feed = FeedConnection(
            "key", "secret", "https://auth.test/login", "wss://feed.test/stream",
            max_reconnect_attempts=3,
            authenticator=_auth, connector=_refuse, sleep=_instant,
        )
        store = PipelineStore(db_path)
        pipeline = AlertPipeline(
            _make_config(db_path), store=store, feed=feed,
            dispatcher=AlertDispatcher(store),
        )

        assert await asyncio.wait_for(pipeline.run(), timeout=5) == 1
        assert feed.state == ConnectionState.FAILED
        assert len(calls) == 4
