"""
Real-time fan-out of message events over WebSockets.

Connections are grouped into rooms keyed by conversation key. Every connection
starts in the inbox room, which receives the events of all conversations, and
can join or leave individual conversation rooms.
"""
import asyncio
import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket

from chathook.core.logging import get_logger
from chathook.services.events import Event

logger = get_logger(__name__)

INBOX_ROOM = "*"


@dataclass
class WebSocketMessage:
    """One frame sent to viewers."""

    event: str  # "message:new", "message:status_update", ...
    data: Dict[str, Any]
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_event(cls, event: Event) -> "WebSocketMessage":
        return cls(event=event.name, data=event.to_data())


class ConnectionManager:
    """Tracks live WebSocket connections and the rooms they listen to."""

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a connection and put it in the inbox room."""
        await websocket.accept()
        await self.join(websocket, INBOX_ROOM)
        logger.info(f"WebSocket connected (total: {self.connection_count})")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for room in list(self._rooms):
                members = self._rooms[room]
                members.discard(websocket)
                if not members:
                    del self._rooms[room]
        logger.info(f"WebSocket disconnected (total: {self.connection_count})")

    async def join(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(websocket)
        logger.debug(f"WebSocket joined room: {room}")

    async def leave(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(websocket)
                if not members:
                    del self._rooms[room]
        logger.debug(f"WebSocket left room: {room}")

    def _audience(self, conversation_key: Optional[str]) -> Set[WebSocket]:
        audience = set(self._rooms.get(INBOX_ROOM, ()))
        if conversation_key:
            audience |= self._rooms.get(conversation_key, set())
        return audience

    async def send_to_room(self, conversation_key: Optional[str], message: WebSocketMessage) -> int:
        """
        Send a frame to the conversation room and the inbox room.

        Each connection gets the frame once. Connections that fail to receive
        are dropped. Returns the number of successful sends.
        """
        json_message = message.to_json()
        dead_connections = []
        delivered = 0

        for connection in list(self._audience(conversation_key)):
            try:
                await connection.send_text(json_message)
                delivered += 1
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                dead_connections.append(connection)

        for connection in dead_connections:
            await self.disconnect(connection)

        return delivered

    async def publish(self, event: Event) -> int:
        return await self.send_to_room(event.conversation_key, WebSocketMessage.from_event(event))

    async def publish_all(self, events: Iterable[Event]) -> None:
        """Fan out events in order. Never raises; fan-out is best effort."""
        for event in events:
            try:
                await self.publish(event)
            except Exception:
                logger.exception(f"Failed to publish {event.name} event")

    @property
    def connection_count(self) -> int:
        connections: Set[WebSocket] = set()
        for members in self._rooms.values():
            connections |= members
        return len(connections)

    def rooms_for(self, websocket: WebSocket) -> Set[str]:
        return {room for room, members in self._rooms.items() if websocket in members}


# Global connection manager
_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    """Get or create the global connection manager."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager()
    return _manager
