"""
WebSocket endpoint for live conversation updates.

Frames from the client:
    {"action": "join", "conversation_key": "..."}
    {"action": "leave", "conversation_key": "..."}
    {"action": "ping"}
"""
import json
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chathook.api.dependencies import get_broadcaster
from chathook.core.logging import get_logger
from chathook.services.broadcast import ConnectionManager, WebSocketMessage

logger = get_logger(__name__)

router = APIRouter(tags=["Realtime"])

ACKS = {"join": "joined", "leave": "left"}


async def _handle_frame(websocket: WebSocket, manager: ConnectionManager, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_text(WebSocketMessage(event="error", data={"detail": "Invalid JSON"}).to_json())
        return
    if not isinstance(frame, dict):
        frame = {}

    action = frame.get("action")
    room = frame.get("conversation_key")

    if action == "ping":
        await websocket.send_text(WebSocketMessage(event="pong", data={}).to_json())
    elif action in ("join", "leave") and isinstance(room, str) and room:
        if action == "join":
            await manager.join(websocket, room)
        else:
            await manager.leave(websocket, room)
        await websocket.send_text(
            WebSocketMessage(event=ACKS[action], data={"conversation_key": room}).to_json()
        )
    else:
        await websocket.send_text(
            WebSocketMessage(event="error", data={"detail": f"Unsupported frame: {action!r}"}).to_json()
        )


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    manager: Annotated[ConnectionManager, Depends(get_broadcaster)],
) -> None:
    await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_frame(websocket, manager, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)
