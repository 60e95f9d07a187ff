"""Internal API routers — /status, /signals and the /ws/live event stream.

No business logic. Reads pipeline state and relays broadcaster events.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from niftyalerts.broadcast import to_payload

logger = logging.getLogger("niftyalerts.api")
router = APIRouter()

_pipeline = None  # Set via configure_routers()


def configure_routers(pipeline) -> None:
    """Inject the running ``AlertPipeline`` (or a duck-type for tests)."""
    global _pipeline  # noqa: PLW0603
    _pipeline = pipeline


def _status_or_idle() -> dict:
    if _pipeline is None:
        return {"feed_state": "idle", "strategies": [], "recent_signals": 0}
    return _pipeline.status()


@router.get("/status")
async def get_status():
    return _status_or_idle()


@router.get("/signals")
async def get_signals(strategy: Optional[str] = None):
    """Recently synthesized signals, newest first."""
    if _pipeline is None:
        return []
    synthesizer = _pipeline.synthesizer
    signals = (
        synthesizer.recent_signals_by_strategy(strategy)
        if strategy else synthesizer.recent_signals()
    )
    return [to_payload(s) for s in signals]


@router.websocket("/ws/live")
async def live_stream(websocket: WebSocket):
    """Push ``nifty_data`` / ``option_data`` / ``trade_signal`` events."""
    await websocket.accept()
    if _pipeline is None:
        await websocket.close()
        return
    broadcaster = _pipeline.broadcaster
    queue = broadcaster.register()

    async def _forward():
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(_forward())
    try:
        # Inbound frames are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        broadcaster.unregister(queue)
