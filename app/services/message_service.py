"""
Message Service - Chat and system events attached to a query

Messages are append-only. The one exception is annotate(), used to
append an accept/reject outcome to a call-request message in place.

Chat messages drive the open query status through next_query_status().
"""
from typing import List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from app.models.message import Message, MessageType, SenderType
from app.models.query import QueryStatus
from app.services.connection import NotificationGateway
from app.services.core import AfterCommitEffects, QueryLockRegistry
from app.services.core.repositories import get_agent_or_raise, get_query_or_raise, update_open_query
from app.services.exceptions import ForbiddenError
from app.services.metrics import query_transitions
from app.services.protocols import PushSenderProtocol
from app.services.query_status import next_query_status

logger = logging.getLogger(__name__)


class MessageService:
    """Service for recording, listing and reading query messages."""

    def __init__(self, gateway: NotificationGateway, push: PushSenderProtocol, locks: QueryLockRegistry):
        self.gateway = gateway
        self.push = push
        self.locks = locks

    @staticmethod
    def record(
        db: AsyncSession,
        query_id: str,
        content: str,
        sender_type: SenderType = SenderType.SYSTEM,
        sender_id: Optional[str] = None,
        message_type: MessageType = MessageType.SYSTEM,
        **fields
    ) -> Message:
        """Add a message to the session. The caller commits."""
        message = Message(
            query_id=query_id,
            content=content,
            sender_type=sender_type.value,
            sender_id=None if sender_type == SenderType.SYSTEM else sender_id,
            message_type=message_type.value,
            **fields
        )
        db.add(message)
        return message

    @staticmethod
    def annotate(message: Message, annotation: str, **fields) -> Message:
        """Append to an existing message and set call fields on it, keeping its id."""
        message.content = f"{message.content}{annotation}"
        for key, value in fields.items():
            setattr(message, key, value)
        return message

    async def post_message(
        self,
        db: AsyncSession,
        query_id: str,
        sender_type: SenderType,
        sender_id: str,
        content: str
    ) -> Message:
        """
        Record a chat message and move the query status accordingly.

        The status write only lands while the query is still open, so a
        reply racing a resolve never reopens the query.

        Raises:
            QueryNotFoundError, AgentNotFoundError
            ForbiddenError: donor message from someone other than the query's donor
        """
        async with self.locks.lock(query_id):
            query = await get_query_or_raise(db, query_id)
            await db.refresh(query)
            sender_name = None
            if sender_type == SenderType.ADMIN:
                agent = await get_agent_or_raise(db, sender_id)
                sender_name = agent.name
            elif sender_type == SenderType.DONOR:
                if sender_id != query.donor_id:
                    raise ForbiddenError("Only the query's donor can post as donor")
            else:
                raise ForbiddenError("System messages cannot be posted")

            old_status = query.status
            new_status = next_query_status(old_status, sender_type.value)
            if new_status and not await update_open_query(db, query, QueryStatus(new_status)):
                logger.info(f"[Messages] Query {query.id} closed before the reply landed, status kept")
                await db.refresh(query)
                new_status = None

            message = self.record(
                db, query.id, content,
                sender_type=sender_type,
                sender_id=sender_id,
                message_type=MessageType.CHAT,
            )
            await db.commit()
            await db.refresh(message)

        effects = AfterCommitEffects("post_message")
        effects.add(self.gateway.message_created, message)
        if new_status:
            query_transitions.labels(status=new_status).inc()
            logger.info(f"[Messages] Query {query.id}: {old_status} -> {new_status} ({sender_type.value})")
            effects.add(self.gateway.status_changed, query.id, old_status, new_status, sender_id)
        if sender_type == SenderType.ADMIN and query.fcm_token:
            effects.add(
                self.push.send_notification,
                query.fcm_token,
                f"New reply from {sender_name}",
                content[:120],
                {"type": "chat_message", "queryId": query.id, "messageId": message.id},
            )
        await effects.run()
        return message

    async def list_messages(
        self,
        db: AsyncSession,
        query_id: str,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        message_type: Optional[MessageType] = None
    ) -> List[Message]:
        """Messages of a query, oldest first."""
        await get_query_or_raise(db, query_id)
        stmt = select(Message).where(Message.query_id == query_id)
        if message_type:
            stmt = stmt.where(Message.message_type == message_type.value)
        stmt = (
            stmt.order_by(Message.created_at.asc(), Message.id.asc())
            .offset(offset)
            .limit(min(limit, MAX_PAGE_LIMIT))
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def mark_messages_read(self, db: AsyncSession, query_id: str, reader_type: SenderType) -> int:
        """Mark the other party's messages as read. Returns how many changed."""
        await get_query_or_raise(db, query_id)
        if reader_type == SenderType.DONOR:
            # Donors read what the desk wrote, system notes included
            from_other = Message.sender_type != SenderType.DONOR.value
        else:
            from_other = Message.sender_type == SenderType.DONOR.value

        result = await db.execute(
            update(Message)
            .where(Message.query_id == query_id, Message.is_read.is_(False), from_other)
            .values(is_read=True)
        )
        await db.commit()

        await self.gateway.messages_read(query_id, reader_type.value)
        return result.rowcount or 0
