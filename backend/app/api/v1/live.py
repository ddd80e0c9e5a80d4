"""
WebSocket route: live alert and reading events.

    WS /api/v1/live

Protocol (JSON text frames):
    client → {"action": "join",  "room": "alerts"}
    server → {"event": "joined", "room": "alerts"}
    client → {"action": "leave", "room": "alerts"}
    server → {"event": "left",   "room": "alerts"}
    server → {"event": "alert" | "new_reading", ...}   pushed as they happen

Unknown actions get {"event": "error", "message": ...}; the connection stays open.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.app.alerts.broadcaster import get_broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["live"])


@router.websocket("/live")
async def live_events(websocket: WebSocket) -> None:
    broadcaster = get_broadcaster()
    await websocket.accept()
    await broadcaster.connect(websocket)
    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                await websocket.send_json({"event": "error", "message": "expected a JSON object"})
                continue
            action = str(data.get("action", "")).lower()
            room = str(data.get("room", "")).strip()
            if action in ("join", "leave") and room:
                if action == "join":
                    await broadcaster.join(websocket, room)
                    await websocket.send_json({"event": "joined", "room": room})
                else:
                    await broadcaster.leave(websocket, room)
                    await websocket.send_json({"event": "left", "room": room})
            else:
                await websocket.send_json({
                    "event": "error",
                    "message": "expected {'action': 'join'|'leave', 'room': <name>}",
                })
    except WebSocketDisconnect:
        logger.debug("Live observer closed the connection")
    except ValueError as exc:
        logger.warning("Malformed live frame, closing: %s", exc)
    finally:
        await broadcaster.disconnect(websocket)
