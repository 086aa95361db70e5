"""
Call Lifecycle Helpers

Ending a session is shared by the explicit end, the expiry sweep and the
resolve/transfer/close/delete cascades. Each path passes its own message
text and reason; the state change, CALL_ENDED message, broadcast and room
cleanup are the same everywhere.
"""
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.call_session import CallSession
from app.models.message import Message, MessageType, SenderType
from app.services.connection import NotificationGateway
from app.services.core import AfterCommitEffects
from app.services.exceptions import ExternalServiceError
from app.services.message_service import MessageService
from app.services.metrics import calls_ended
from app.services.protocols import RoomProviderProtocol

logger = logging.getLogger(__name__)


async def delete_room_quietly(room_provider: RoomProviderProtocol, room_name: str) -> bool:
    """Best-effort provider cleanup; the session is already ENDED either way."""
    try:
        await room_provider.delete_room(room_name)
        return True
    except ExternalServiceError as e:
        logger.error(f"[Calls] Room {room_name} could not be deleted: {e}")
        return False


async def _count_call_end(reason: str) -> None:
    calls_ended.labels(reason=reason).inc()


def close_session(
    db: AsyncSession,
    session: CallSession,
    *,
    gateway: NotificationGateway,
    room_provider: RoomProviderProtocol,
    effects: AfterCommitEffects,
    reason: str,
    content: str,
    sender_type: SenderType = SenderType.SYSTEM,
    sender_id: Optional[str] = None,
    ended_by: Optional[str] = None,
    record_message: bool = True
) -> Optional[Message]:
    """
    Move an active session to ENDED inside the caller's transaction.

    Appends a new CALL_ENDED message (unless record_message is False) and
    queues the broadcast, the room deletion and the metric for after the
    commit. Returns the recorded message.
    """
    session.mark_ended()
    logger.info(f"[Calls] Session {session.id} ({session.room_name}) ended: {reason}")

    message = None
    if record_message:
        message = MessageService.record(
            db, session.query_id, content,
            sender_type=sender_type,
            sender_id=sender_id,
            message_type=MessageType.CALL_ENDED,
            call_mode=session.mode,
            room_name=session.room_name,
            call_session_id=session.id,
        )
        effects.add(gateway.message_created, message)

    effects.add(gateway.active_call_ended, session, reason, ended_by)
    effects.add(delete_room_quietly, room_provider, session.room_name)
    effects.add(_count_call_end, reason)
    return message
