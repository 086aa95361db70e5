"""
Connection Manager

Core WebSocket connection management for the notification gateway:
- Connection/disconnection handling with optional agent identity
- Room membership (query rooms, personal channels, admins room)
- Multi-room broadcasting with one delivery per connection

One instance is built at startup and handed to every component that
broadcasts; it is torn down with close_all() on shutdown.
"""
import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Set, Any
import logging

from fastapi import WebSocket

from app.config.constants import WS_SHUTDOWN_CLOSE_CODE
from app.models.agent import STAFF_ROLES
from app.services.auth_service import decode_token
from app.services.metrics import gateway_connections
from .models import ClientConnection, admins_room, query_room, user_room

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages all notification WebSocket connections.

    Provides methods for:
    - Registering connections (authenticated agents or anonymous donors)
    - Joining/leaving query rooms
    - Broadcasting typed events to rooms
    """

    def __init__(self, token_decoder: Callable[[str], Optional[dict]] = decode_token):
        self._decode = token_decoder
        # connection_id -> ClientConnection
        self._connections: Dict[str, ClientConnection] = {}
        # room -> {connection_id}
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    # === Core Connection Methods ===

    async def connect(self, websocket: WebSocket, token: Optional[str] = None) -> ClientConnection:
        """
        Register an accepted WebSocket.

        A valid token tags the connection with the agent identity and joins
        its personal channel (plus the admins room for staff roles). A
        missing or invalid token leaves the connection anonymous.
        """
        agent_id = None
        role = None
        if token:
            claims = self._decode(token)
            if claims:
                agent_id = claims.get("sub")
                role = claims.get("role")
            else:
                logger.info("[Gateway] Invalid token, connection stays anonymous")

        conn = ClientConnection(websocket=websocket, agent_id=agent_id, role=role)

        async with self._lock:
            self._connections[conn.connection_id] = conn
            if agent_id:
                self._join(conn, user_room(agent_id))
                if role in STAFF_ROLES:
                    self._join(conn, admins_room())
            gateway_connections.set(len(self._connections))

        logger.info(
            f"[Gateway] Connected {conn.connection_id} "
            f"({'agent ' + agent_id if agent_id else 'anonymous'}), rooms={sorted(conn.rooms)}"
        )
        return conn

    async def disconnect(self, connection_id: str) -> Optional[ClientConnection]:
        """Remove a connection and all of its room memberships."""
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn:
                for room in list(conn.rooms):
                    self._leave(conn, room)
            gateway_connections.set(len(self._connections))

        if conn:
            logger.info(f"[Gateway] Disconnected {connection_id}")
        return conn

    # === Room Membership ===

    def _join(self, conn: ClientConnection, room: str) -> None:
        self._rooms.setdefault(room, set()).add(conn.connection_id)
        conn.rooms.add(room)

    def _leave(self, conn: ClientConnection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn.connection_id)
            if not members:
                del self._rooms[room]
        conn.rooms.discard(room)

    async def join_query_room(self, connection_id: str, query_id: str, donor_id: Optional[str] = None) -> Optional[str]:
        """Subscribe a connection to a query room. Returns the room name, or None if unknown."""
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                return None
            room = query_room(query_id)
            self._join(conn, room)
            if donor_id:
                conn.donor_id = donor_id

        logger.debug(f"[Gateway] {connection_id} joined {room}")
        return room

    async def leave_query_room(self, connection_id: str, query_id: str) -> Optional[str]:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                return None
            room = query_room(query_id)
            self._leave(conn, room)

        logger.debug(f"[Gateway] {connection_id} left {room}")
        return room

    # === Broadcast Methods ===

    async def broadcast(self, event: str, payload: Dict[str, Any], targets: Iterable[str]) -> int:
        """
        Send `{"type": event, **payload}` to every connection in any of
        the target rooms, at most once per connection.

        Returns:
            Number of connections the frame was delivered to
        """
        async with self._lock:
            recipients: List[ClientConnection] = []
            seen: Set[str] = set()
            for room in targets:
                for connection_id in self._rooms.get(room, ()):
                    if connection_id in seen:
                        continue
                    seen.add(connection_id)
                    conn = self._connections.get(connection_id)
                    if conn:
                        recipients.append(conn)

        message = {"type": event, **payload}
        sent_count = 0
        for conn in recipients:
            if await conn.send_json(message):
                sent_count += 1

        logger.debug(f"[Gateway] {event} delivered to {sent_count}/{len(recipients)} connection(s)")
        return sent_count

    async def send_to_connection(self, connection_id: str, message: Dict[str, Any]) -> bool:
        conn = self._connections.get(connection_id)
        if not conn:
            return False
        return await conn.send_json(message)

    # === Teardown ===

    async def close_all(self, code: int = WS_SHUTDOWN_CLOSE_CODE) -> int:
        """Close every socket and clear the registry. Returns how many were closed."""
        async with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
            self._rooms.clear()
            gateway_connections.set(0)

        for conn in connections:
            try:
                await conn.websocket.close(code=code)
            except Exception as e:
                logger.warning(f"[Gateway] Error closing {conn.connection_id}: {e}")

        logger.info(f"[Gateway] Closed {len(connections)} connection(s)")
        return len(connections)

    # === Query Methods ===

    def get_connection(self, connection_id: str) -> Optional[ClientConnection]:
        return self._connections.get(connection_id)

    def get_room_members(self, room: str) -> List[str]:
        return list(self._rooms.get(room, ()))

    def get_total_connections(self) -> int:
        return len(self._connections)
