"""
WebSocket endpoint for real-time resolution events.

Clients connect per market and receive every lifecycle event for it:
  - {"type": "subscribed", "subject_id": "...", "stage": "..."}
  - {"type": "event", "event": {...}}
"""
from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/markets/{market_id}")
async def market_events(websocket: WebSocket, market_id: str):
    orchestrator = getattr(websocket.app.state, "orchestrator", None)
    await websocket.accept()
    if orchestrator is None:
        await websocket.send_json({"type": "error", "message": "Oracle not initialized"})
        await websocket.close()
        return

    async with orchestrator.events.stream(market_id) as queue:
        await websocket.send_json({
            "type": "subscribed",
            "subject_id": market_id,
            "stage": orchestrator.stage(market_id).value,
        })

        async def _pump():
            while True:
                event = await queue.get()
                await websocket.send_json({
                    "type": "event",
                    "event": event.model_dump(mode="json"),
                })

        pump = asyncio.create_task(_pump())
        try:
            # Inbound messages are ignored; receiving only detects disconnects
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Event stream for market %s disconnected", market_id)
        finally:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Event pump for market %s ended: %s", market_id, e)
