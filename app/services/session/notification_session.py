import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.schemas.websocket_events import (
    JoinQueryRoomEvent,
    LeaveQueryRoomEvent,
    PingEvent,
    client_event_adapter,
)
from app.services.connection import ClientConnection, ConnectionManager

logger = logging.getLogger(__name__)


class NotificationSession:
    """
    Drives one notification WebSocket from accept to disconnect.
    Handles:
    - Registration with the ConnectionManager (agent or anonymous)
    - Room subscription frames from the client
    - Cleanup on disconnect
    """

    def __init__(self, websocket: WebSocket, manager: ConnectionManager, token: Optional[str] = None):
        self.websocket = websocket
        self.manager = manager
        self.token = token
        self.connection: Optional[ClientConnection] = None

    async def run(self):
        """Main entry point for a notification socket."""
        await self.websocket.accept()
        self.connection = await self.manager.connect(self.websocket, self.token)

        await self.connection.send_json({
            "type": "connected",
            "connection_id": self.connection.connection_id,
            "authenticated": self.connection.is_authenticated,
            "rooms": sorted(self.connection.rooms),
        })

        try:
            while True:
                text = await self.websocket.receive_text()
                await self._handle_frame(text)

        except WebSocketDisconnect:
            logger.info(f"[Gateway] Client {self.connection.connection_id} disconnected")

        finally:
            await self.manager.disconnect(self.connection.connection_id)

    async def _handle_frame(self, text: str):
        connection_id = self.connection.connection_id
        try:
            event = client_event_adapter.validate_json(text)
        except ValidationError as e:
            logger.warning(f"[Gateway] Invalid frame from {connection_id}: {e.error_count()} error(s)")
            await self.connection.send_json({"type": "error", "message": "Invalid event"})
            return

        if isinstance(event, JoinQueryRoomEvent):
            room = await self.manager.join_query_room(connection_id, event.query_id, event.donor_id)
            await self.connection.send_json({
                "type": "joinedQueryRoom",
                "success": room is not None,
                "room": room,
            })

        elif isinstance(event, LeaveQueryRoomEvent):
            room = await self.manager.leave_query_room(connection_id, event.query_id)
            await self.connection.send_json({
                "type": "leftQueryRoom",
                "success": room is not None,
                "room": room,
            })

        elif isinstance(event, PingEvent):
            await self.connection.send_json({"type": "pong"})
