"""
Connection Models

Data classes representing notification WebSocket connections and the
room naming scheme they subscribe to.
"""
import uuid
from datetime import datetime
from typing import Dict, Any, Optional, Set
import logging

from fastapi import WebSocket

from app.config.constants import ADMINS_ROOM, QUERY_ROOM_PREFIX, USER_ROOM_PREFIX

logger = logging.getLogger(__name__)


def query_room(query_id: str) -> str:
    return f"{QUERY_ROOM_PREFIX}{query_id}"


def user_room(user_id: str) -> str:
    return f"{USER_ROOM_PREFIX}{user_id}"


def admins_room() -> str:
    return ADMINS_ROOM


class ClientConnection:
    """Represents a single notification WebSocket (agent dashboard or donor app)."""

    def __init__(
        self,
        websocket: WebSocket,
        agent_id: Optional[str] = None,
        role: Optional[str] = None
    ):
        self.connection_id = str(uuid.uuid4())
        self.websocket = websocket
        self.agent_id = agent_id
        self.role = role
        # Set when a donor client joins its query room
        self.donor_id: Optional[str] = None
        self.rooms: Set[str] = set()
        self.connected_at = datetime.utcnow()

    @property
    def is_authenticated(self) -> bool:
        return self.agent_id is not None

    async def send_json(self, data: Dict[str, Any]) -> bool:
        """Send JSON message to this connection."""
        try:
            await self.websocket.send_json(data)
            return True
        except Exception as e:
            logger.warning(f"[Gateway] Error sending {data.get('type')} to {self.connection_id}: {e}")
            return False

    def __repr__(self):
        who = self.agent_id or self.donor_id or "anonymous"
        return f"<ClientConnection {self.connection_id} {who}>"
