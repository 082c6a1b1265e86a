from typing import Dict, List, Optional, Set, Tuple
from fastapi import WebSocket
import asyncio
import uuid
from datetime import timedelta
import structlog

from deskmate.domain.models.agent_state import session_key, utcnow
from deskmate.infrastructure.observability.logging import metrics
from .schema.events import BaseEvent, ErrorCode, ErrorEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Tracks channel connections, their session binding and session rooms"""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.connection_metadata: Dict[str, Dict] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a new connection and return its id"""
        await websocket.accept()

        connection_id = uuid.uuid4().hex
        async with self._lock:
            self.active_connections[connection_id] = websocket
            self.connection_metadata[connection_id] = {
                "user_id": None,
                "session_id": None,
                "room": None,
                "connected_at": utcnow(),
                "last_activity": utcnow()
            }

        metrics.set_gauge("connections.active", len(self.active_connections))
        logger.info("WebSocket connected", connection_id=connection_id)
        return connection_id

    async def bind(self, connection_id: str, user_id: str, session_id: str) -> str:
        """Bind a connection to one (user, session) and move it into that room"""

        room = session_key(user_id, session_id)
        async with self._lock:
            metadata = self.connection_metadata.get(connection_id)
            if metadata is None:
                raise KeyError(connection_id)

            self._leave_room(connection_id, metadata.get("room"))
            metadata.update(user_id=user_id, session_id=session_id, room=room)
            self.rooms.setdefault(room, set()).add(connection_id)

        logger.info("Connection joined session", connection_id=connection_id, user_id=user_id, session_id=session_id)
        return room

    def _leave_room(self, connection_id: str, room: Optional[str]):
        if not room or room not in self.rooms:
            return
        self.rooms[room].discard(connection_id)
        if not self.rooms[room]:
            del self.rooms[room]

    def get_binding(self, connection_id: str) -> Optional[Tuple[str, str]]:
        """(user_id, session_id) of a joined connection"""
        metadata = self.connection_metadata.get(connection_id)
        if not metadata or not metadata.get("room"):
            return None
        return metadata["user_id"], metadata["session_id"]

    def get_room(self, connection_id: str) -> Optional[str]:
        metadata = self.connection_metadata.get(connection_id)
        return metadata.get("room") if metadata else None

    def touch(self, connection_id: str):
        """Record inbound activity"""
        metadata = self.connection_metadata.get(connection_id)
        if metadata is not None:
            metadata["last_activity"] = utcnow()

    async def disconnect(self, connection_id: str, close: bool = True):
        """Release a connection, its binding and its room membership"""
        async with self._lock:
            websocket = self.active_connections.pop(connection_id, None)
            metadata = self.connection_metadata.pop(connection_id, None)
            if metadata:
                self._leave_room(connection_id, metadata.get("room"))

        if websocket is None:
            return

        if close:
            try:
                await websocket.close()
            except RuntimeError as e:
                # Already closed by the peer
                logger.debug("WebSocket already closed", connection_id=connection_id, error=str(e))

        metrics.set_gauge("connections.active", len(self.active_connections))
        logger.info("WebSocket disconnected", connection_id=connection_id)

    async def send_event(self, connection_id: str, event: BaseEvent) -> bool:
        """Send an event to a single connection"""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            logger.warning("Attempted to send to disconnected connection", connection_id=connection_id)
            return False

        try:
            await websocket.send_json(event.to_wire())
            return True

        except Exception as e:
            logger.error("Failed to send event", connection_id=connection_id, error=str(e))
            await self.disconnect(connection_id, close=False)
            return False

    async def broadcast_to_room(self, room: str, event: BaseEvent):
        """Send an event to every connection joined to a session room, in order"""
        for connection_id in list(self.rooms.get(room, ())):
            await self.send_event(connection_id, event)

    async def send_error(self, connection_id: str, code: ErrorCode, message: str):
        """Send an error event to one connection"""
        await self.send_event(connection_id, ErrorEvent.create(code, message))

    def get_room_connections(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, ()))

    async def sweep_stale(self, max_idle: timedelta) -> List[str]:
        """Close connections with no inbound activity for max_idle"""
        cutoff = utcnow() - max_idle
        stale = [
            connection_id
            for connection_id, metadata in list(self.connection_metadata.items())
            if metadata.get("last_activity") and metadata["last_activity"] < cutoff
        ]

        for connection_id in stale:
            logger.warning("Disconnecting stale connection", connection_id=connection_id)
            await self.disconnect(connection_id)

        return stale

    async def close_all(self):
        for connection_id in list(self.active_connections):
            await self.disconnect(connection_id)
