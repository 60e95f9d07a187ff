"""Tests for the internal API — /health, /status, /signals and /ws/live."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from niftyalerts.api.routers import configure_routers
from niftyalerts.main import app
from niftyalerts.strategy.models import BUY, IndicatorResult, TradeSignal

client = TestClient(app)

_TS = datetime(2025, 6, 10, 9, 30, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────


def _signal(signal_id: str, strategy_name: str = "RSI Strategy") -> TradeSignal:
    return TradeSignal(
        id=signal_id,
        strategy_name=strategy_name,
        signal_type=BUY,
        instrument="NIFTY 22500 CE",
        entry_price=100.0,
        target_price=150.0,
        stop_loss_price=70.0,
        confidence=83,
        reasoning="test",
        indicators=[IndicatorResult("RSI", 31.6, _TS)],
        timestamp=_TS,
    )


class PrefilledBroadcaster:
    """Hands every client a queue already holding one event."""

    def __init__(self, message: dict) -> None:
        self._message = message
        self.unregistered = 0

    def register(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._message)
        return queue

    def unregister(self, queue) -> None:
        self.unregistered += 1


def _make_pipeline(signals=(), broadcaster=None):
    synthesizer = MagicMock()
    synthesizer.recent_signals.return_value = list(signals)
    synthesizer.recent_signals_by_strategy.side_effect = lambda name: [
        s for s in signals if s.strategy_name == name
    ]
    pipeline = SimpleNamespace(
        synthesizer=synthesizer,
        broadcaster=broadcaster,
        status=lambda: {"feed_state": "subscribed", "recent_signals": len(signals)},
    )
    return pipeline


# ── Tests ────────────────────────────────────────────────────────────────


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestStatus:
    def test_idle_without_pipeline(self):
        configure_routers(None)
        data = client.get("/status").json()
        assert data["feed_state"] == "idle"
        assert data["strategies"] == []

    def test_reports_pipeline_status(self):
        configure_routers(_make_pipeline(signals=[_signal("a")]))
        data = client.get("/status").json()
        assert data == {"feed_state": "subscribed", "recent_signals": 1}


class TestSignals:
    def test_recent_signals_serialised(self):
        configure_routers(_make_pipeline(signals=[_signal("a")]))
        data = client.get("/signals").json()
        assert data[0]["id"] == "a"
        assert data[0]["timestamp"] == "2025-06-10T09:30:00+00:00"
        assert data[0]["indicators"][0]["name"] == "RSI"

    def test_filter_by_strategy(self):
        signals = [_signal("a"), _signal("b", "Open Interest Strategy")]
        configure_routers(_make_pipeline(signals=signals))
        data = client.get("/signals", params={"strategy": "Open Interest Strategy"}).json()
        assert [s["id"] for s in data] == ["b"]

    def test_empty_without_pipeline(self):
        configure_routers(None)
        assert client.get("/signals").json() == []


class TestLiveStream:
    def test_forwards_broadcaster_events(self):
        message = {"event": "trade_signal", "data": {"id": "a"}}
        broadcaster = PrefilledBroadcaster(message)
        configure_routers(_make_pipeline(broadcaster=broadcaster))

        with client.websocket_connect("/ws/live") as ws:
            assert ws.receive_json() == message
        configure_routers(None)
