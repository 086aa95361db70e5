"""
Connection Notifications

Typed lifecycle events on top of ConnectionManager.broadcast. Each method
fixes the event name, its payload fields and its target rooms, so the
services never spell out wire details themselves.

Broadcasts are fire-and-forget: a disconnected client misses the event
and re-fetches state over REST after reconnecting.
"""
from datetime import datetime
from typing import Dict, Any, Iterable, Optional, TYPE_CHECKING
import logging

from .models import admins_room, query_room, user_room

if TYPE_CHECKING:
    from app.models.call_session import CallSession
    from app.models.message import Message
    from app.models.query import DonorQuery
    from .manager import ConnectionManager

logger = logging.getLogger(__name__)


class NotificationGateway:
    """Lifecycle event fan-out."""

    def __init__(self, manager: "ConnectionManager"):
        self.manager = manager

    async def _emit(self, event: str, payload: Dict[str, Any], targets: Iterable[str]) -> int:
        payload = {**payload, "timestamp": datetime.utcnow().isoformat()}
        return await self.manager.broadcast(event, payload, targets)

    # === Query events ===

    async def new_query(self, query: "DonorQuery") -> int:
        return await self._emit("newQuery", {
            "query_id": query.id,
            "donor": query.donor,
            "donor_id": query.donor_id,
            "test": query.test,
            "stage": query.stage,
        }, [admins_room()])

    async def query_status_change(self, query_id: str, status: str, updated_by: Optional[str]) -> int:
        return await self._emit("queryStatusChange", {
            "query_id": query_id,
            "status": status,
            "updated_by": updated_by,
        }, [query_room(query_id), admins_room()])

    async def ticket_status_changed(
        self,
        query_id: str,
        old_status: str,
        new_status: str,
        agent_id: Optional[str]
    ) -> int:
        return await self._emit("ticketStatusChanged", {
            "query_id": query_id,
            "old_status": old_status,
            "new_status": new_status,
            "agent_id": agent_id,
        }, [query_room(query_id), admins_room()])

    async def status_changed(self, query_id: str, old_status: str, new_status: str, actor_id: Optional[str]) -> None:
        """Both status events a status transition produces."""
        await self.query_status_change(query_id, new_status, actor_id)
        await self.ticket_status_changed(query_id, old_status, new_status, actor_id)

    async def query_assigned(
        self,
        agent_id: str,
        query_id: str,
        assigned_by: Optional[str],
        reminder: bool = False
    ) -> int:
        return await self._emit("queryAssigned", {
            "query_id": query_id,
            "assigned_by": assigned_by,
            "reminder": reminder,
        }, [user_room(agent_id)])

    async def query_resolved(self, query_id: str, resolved_by: Optional[str]) -> int:
        return await self._emit("queryResolved", {
            "query_id": query_id,
            "resolved_by": resolved_by,
        }, [query_room(query_id), admins_room()])

    async def query_transfer(
        self,
        query_id: str,
        transferred_to: str,
        transferred_to_id: str,
        transferred_by: str
    ) -> int:
        return await self._emit("queryTransfer", {
            "query_id": query_id,
            "transferred_to": transferred_to,
            "transferred_to_id": transferred_to_id,
            "transferred_by": transferred_by,
        }, [admins_room()])

    async def ticket_transferred(self, query_id: str, from_agent_id: Optional[str], to_agent_id: str) -> int:
        targets = [query_room(query_id), user_room(to_agent_id), admins_room()]
        if from_agent_id:
            targets.append(user_room(from_agent_id))
        return await self._emit("ticketTransferred", {
            "query_id": query_id,
            "from_agent_id": from_agent_id,
            "to_agent_id": to_agent_id,
        }, targets)

    # === Call events ===

    async def call_started(
        self,
        session: "CallSession",
        room_url: str,
        started_by: Optional[str],
        call_request_id: Optional[str] = None
    ) -> int:
        return await self._emit("callStarted", {
            "query_id": session.query_id,
            "call_session_id": session.id,
            "room_name": session.room_name,
            "room_url": room_url,
            "mode": session.mode,
            "user_token": session.user_token,
            "started_by": started_by,
            "call_request_id": call_request_id,
        }, [query_room(session.query_id), admins_room()])

    async def active_call_started(self, session: "CallSession") -> int:
        return await self._emit("activeCallStarted", {
            "query_id": session.query_id,
            "call_session_id": session.id,
            "room_name": session.room_name,
            "status": session.status,
            "agent_id": session.agent_id,
        }, [query_room(session.query_id), admins_room()])

    async def active_call_ended(self, session: "CallSession", reason: str, ended_by: Optional[str]) -> int:
        return await self._emit("activeCallEnded", {
            "query_id": session.query_id,
            "call_session_id": session.id,
            "room_name": session.room_name,
            "reason": reason,
            "ended_by": ended_by,
        }, [query_room(session.query_id), admins_room()])

    # === Message events ===

    async def new_message(self, message: "Message") -> int:
        return await self._emit("newMessage", {
            "query_id": message.query_id,
            "message_id": message.id,
            "sender_type": message.sender_type,
            "sender_id": message.sender_id,
            "message_type": message.message_type,
        }, [query_room(message.query_id)])

    async def enhanced_message(self, message: "Message") -> int:
        # Sender fields let the sending client drop its own echo
        return await self._emit("enhancedMessage", message.to_dict(), [query_room(message.query_id), admins_room()])

    async def message_created(self, message: "Message") -> None:
        await self.new_message(message)
        await self.enhanced_message(message)

    async def messages_read(self, query_id: str, reader_type: str) -> int:
        return await self._emit("messagesRead", {
            "query_id": query_id,
            "reader_type": reader_type,
        }, [query_room(query_id)])
