"""
Query Service - Donor query lifecycle

Status machine:
    PENDING_REPLY <-> IN_PROGRESS   (chat replies, see query_status)
    open --(resolve | donor close)--> RESOLVED
    open --(transfer)--> TRANSFERRED

RESOLVED and TRANSFERRED are terminal. Closing a query ends its active
calls through CallService in the same transaction and under the same
query lock as the status change.
"""
from typing import List, Optional
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import (
    ACTIVE_QUERY_EXISTS_TEXT,
    CALL_ENDED_QUERY_CLOSED_TEXT,
    CALL_ENDED_QUERY_RESOLVED_TEXT,
    CALL_ENDED_QUERY_TRANSFERRED_TEXT,
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
)
from app.models.agent import Agent
from app.models.call_request import CallRequest
from app.models.call_session import CallSession
from app.models.message import Message, MessageType, SenderType
from app.models.query import DonorQuery, QueryStatus
from app.services.call import CallService
from app.services.call.validators import ensure_agent_can_act, ensure_query_open
from app.services.connection import NotificationGateway
from app.services.core import AfterCommitEffects, QueryLockRegistry
from app.services.core.repositories import (
    find_open_query_for_donor,
    get_agent_or_raise,
    get_query_or_raise,
    update_open_query,
)
from app.services.email_service import EmailService
from app.services.exceptions import ActiveQueryExistsError, ForbiddenError, InvalidStateError
from app.services.message_service import MessageService
from app.services.metrics import query_transitions
from app.services.protocols import PushSenderProtocol

logger = logging.getLogger(__name__)


class QueryService:
    """Service for submitting, assigning and closing donor queries."""

    def __init__(
        self,
        calls: CallService,
        messages: MessageService,
        gateway: NotificationGateway,
        push: PushSenderProtocol,
        email: EmailService,
        locks: QueryLockRegistry
    ):
        self.calls = calls
        self.messages = messages
        self.gateway = gateway
        self.push = push
        self.email = email
        self.locks = locks

    async def _active_agent_emails(self, db: AsyncSession) -> List[str]:
        result = await db.execute(
            select(Agent.email).where(Agent.is_active.is_(True), Agent.email.is_not(None))
        )
        return list(result.scalars().all())

    async def _load_open_query(self, db: AsyncSession, query_id: str) -> DonorQuery:
        # Called under the query lock; the session may hold an older copy
        query = await get_query_or_raise(db, query_id)
        await db.refresh(query)
        return query

    async def _transition(self, db: AsyncSession, query: DonorQuery, new_status: QueryStatus,
                          actor_id: Optional[str], effects: AfterCommitEffects, **values) -> None:
        """
        Guarded status write (plus extra columns).

        Raises:
            InvalidStateError after rolling back, when another worker closed
            the query since it was read
        """
        old_status, query_id = query.status, query.id
        if not await update_open_query(db, query, new_status, **values):
            await db.rollback()
            effects.discard()
            raise InvalidStateError(f"Query {query_id} was closed by another request")
        if old_status != new_status.value:
            effects.add(self.gateway.status_changed, query.id, old_status, new_status.value, actor_id)

    # === Submission ===

    async def submit_query(
        self,
        db: AsyncSession,
        donor: str,
        donor_id: str,
        test: str,
        stage: str,
        device: str,
        content: Optional[str] = None,
        fcm_token: Optional[str] = None,
        call_type: Optional[str] = None
    ) -> DonorQuery:
        """
        Open a new query for a donor.

        Two submissions racing past the check meet the one-open-query
        index; the loser gets the same error.

        Raises:
            ActiveQueryExistsError if the donor already has an open query
        """
        existing = await find_open_query_for_donor(db, donor_id)
        if existing:
            raise ActiveQueryExistsError(ACTIVE_QUERY_EXISTS_TEXT)

        query = DonorQuery(
            donor=donor,
            donor_id=donor_id,
            test=test,
            stage=stage,
            device=device,
            content=content,
            fcm_token=fcm_token,
            call_type=call_type,
            status=QueryStatus.PENDING_REPLY.value,
        )
        db.add(query)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"[Queries] Donor {donor_id} lost a concurrent submission")
            raise ActiveQueryExistsError(ACTIVE_QUERY_EXISTS_TEXT) from e

        effects = AfterCommitEffects("submit_query")
        if content:
            message = self.messages.record(
                db, query.id, content,
                sender_type=SenderType.DONOR,
                sender_id=donor_id,
                message_type=MessageType.QUERY,
            )
            effects.add(self.gateway.message_created, message)
        recipients = await self._active_agent_emails(db)
        await db.commit()

        logger.info(f"[Queries] Donor {donor_id} submitted query {query.id}")
        effects.add(self.gateway.new_query, query)
        effects.add(self.email.send_new_query_email, recipients, query)
        await effects.run()
        return query

    # === Assignment ===

    async def accept_query(self, db: AsyncSession, query_id: str, agent_id: str) -> DonorQuery:
        """
        Assign an open query to an agent and mark it IN_PROGRESS.

        Raises:
            QueryNotFoundError, AgentNotFoundError, InvalidStateError
        """
        async with self.locks.lock(query_id):
            query = await self._load_open_query(db, query_id)
            agent = await get_agent_or_raise(db, agent_id)
            ensure_query_open(query)

            effects = AfterCommitEffects("accept_query")
            previous_agent_id = query.assigned_to_id
            status_changed = query.status != QueryStatus.IN_PROGRESS.value
            await self._transition(db, query, QueryStatus.IN_PROGRESS, agent.id, effects, assigned_to_id=agent.id)
            message = self.messages.record(db, query.id, f"Query accepted by {agent.name}")
            await db.commit()

        if status_changed:
            query_transitions.labels(status=QueryStatus.IN_PROGRESS.value).inc()
        if previous_agent_id and previous_agent_id != agent.id:
            logger.info(f"[Queries] Query {query.id} reassigned from {previous_agent_id} to {agent.id}")
        else:
            logger.info(f"[Queries] Agent {agent.id} accepted query {query.id}")
        effects.add(self.gateway.message_created, message)
        effects.add(self.gateway.query_assigned, agent.id, query.id, agent.id)
        await effects.run()
        return query

    # === Closing ===

    async def resolve_query(self, db: AsyncSession, query_id: str, agent_id: str) -> DonorQuery:
        """
        Resolve a query and end every active call on it.

        Raises:
            QueryNotFoundError, AgentNotFoundError
            ForbiddenError if the agent is neither assigned nor elevated
            InvalidStateError if the query is already closed
        """
        async with self.locks.lock(query_id):
            query = await self._load_open_query(db, query_id)
            agent = await get_agent_or_raise(db, agent_id)
            ensure_agent_can_act(query, agent)
            ensure_query_open(query)

            effects = AfterCommitEffects("resolve_query")
            await self._transition(db, query, QueryStatus.RESOLVED, agent.id, effects, resolved_by_id=agent.id)
            await self.calls.end_all_active_calls_for_query(
                db, query.id, effects,
                reason="query_resolved",
                content=CALL_ENDED_QUERY_RESOLVED_TEXT,
                ended_by=agent.id,
            )
            message = self.messages.record(db, query.id, f"Query resolved by {agent.name}")
            effects.add(self.gateway.message_created, message)
            await db.commit()

        query_transitions.labels(status=QueryStatus.RESOLVED.value).inc()
        logger.info(f"[Queries] Agent {agent.id} resolved query {query.id}")
        effects.add(self.gateway.query_resolved, query.id, agent.id)
        if query.fcm_token:
            effects.add(
                self.push.send_notification,
                query.fcm_token,
                "Query resolved",
                f"Your query about {query.test} has been resolved",
                {"type": "query_resolved", "queryId": query.id},
            )
        await effects.run()
        return query

    async def transfer_query(
        self,
        db: AsyncSession,
        query_id: str,
        agent_id: str,
        target_agent_id: str,
        note: Optional[str] = None
    ) -> DonorQuery:
        """
        Hand a query over to another agent. The query becomes TRANSFERRED
        and its active calls end.

        Raises:
            QueryNotFoundError, AgentNotFoundError, InvalidStateError
        """
        async with self.locks.lock(query_id):
            query = await self._load_open_query(db, query_id)
            agent = await get_agent_or_raise(db, agent_id)
            target = await get_agent_or_raise(db, target_agent_id)
            ensure_query_open(query)

            effects = AfterCommitEffects("transfer_query")
            from_agent_id = query.assigned_to_id
            await self._transition(
                db, query, QueryStatus.TRANSFERRED, agent.id, effects,
                transferred_to_id=target.id,
                transferred_to=target.name,
                transfer_note=note,
            )
            await self.calls.end_all_active_calls_for_query(
                db, query.id, effects,
                reason="query_transferred",
                content=CALL_ENDED_QUERY_TRANSFERRED_TEXT,
                ended_by=agent.id,
            )

            text = f"Query transferred to {target.name} by {agent.name}"
            if note:
                text = f"{text}\n\nNote: {note}"
            message = self.messages.record(db, query.id, text)
            effects.add(self.gateway.message_created, message)
            await db.commit()

        query_transitions.labels(status=QueryStatus.TRANSFERRED.value).inc()
        logger.info(f"[Queries] Agent {agent.id} transferred query {query.id} to {target.id}")
        effects.add(self.gateway.query_transfer, query.id, target.name, target.id, agent.id)
        effects.add(self.gateway.ticket_transferred, query.id, from_agent_id, target.id)
        effects.add(self.gateway.query_assigned, target.id, query.id, agent.id)
        if target.email:
            effects.add(self.email.send_transfer_email, target.email, query, agent.name, note)
        await effects.run()
        return query

    async def donor_close_query(self, db: AsyncSession, query_id: str, donor_id: str) -> DonorQuery:
        """
        The donor closes their own query.

        Raises:
            QueryNotFoundError
            ForbiddenError if donor_id does not own the query
            InvalidStateError if the query is already closed
        """
        async with self.locks.lock(query_id):
            query = await self._load_open_query(db, query_id)
            if query.donor_id != donor_id:
                raise ForbiddenError("Only the query's donor can close it")
            ensure_query_open(query)

            effects = AfterCommitEffects("donor_close_query")
            await self._transition(db, query, QueryStatus.RESOLVED, donor_id, effects)
            await self.calls.end_all_active_calls_for_query(
                db, query.id, effects,
                reason="query_closed",
                content=CALL_ENDED_QUERY_CLOSED_TEXT,
                ended_by=donor_id,
            )
            message = self.messages.record(db, query.id, "Query closed by donor")
            effects.add(self.gateway.message_created, message)
            await db.commit()

        query_transitions.labels(status=QueryStatus.RESOLVED.value).inc()
        logger.info(f"[Queries] Donor {donor_id} closed query {query.id}")
        effects.add(self.gateway.query_resolved, query.id, None)
        await effects.run()
        return query

    async def send_reminder(
        self,
        db: AsyncSession,
        query_id: str,
        agent_id: str,
        message: Optional[str] = None
    ) -> DonorQuery:
        """
        Nudge the agent a query was transferred to.

        Raises:
            InvalidStateError unless the query is TRANSFERRED to someone
        """
        query = await get_query_or_raise(db, query_id)
        agent = await get_agent_or_raise(db, agent_id)
        if query.status != QueryStatus.TRANSFERRED.value or not query.transferred_to_id:
            raise InvalidStateError(f"Query {query.id} is not transferred, nothing to remind")
        target = await get_agent_or_raise(db, query.transferred_to_id)

        logger.info(f"[Queries] Agent {agent.id} reminded {target.id} about query {query.id}")
        effects = AfterCommitEffects("send_reminder")
        effects.add(self.gateway.query_assigned, target.id, query.id, agent.id, True)
        if target.email:
            effects.add(self.email.send_reminder_email, target.email, query, agent.name)
        if target.fcm_token:
            effects.add(
                self.push.send_notification,
                target.fcm_token,
                "Query reminder",
                message or f"{agent.name} is waiting on query #{query.id}",
                {"type": "query_reminder", "queryId": query.id},
            )
        await effects.run()
        return query

    # === Removal ===

    async def delete_query(self, db: AsyncSession, query_id: str, agent_id: str) -> None:
        """
        Remove a query with its messages, call requests and sessions.

        Raises:
            ForbiddenError unless the agent holds the elevated role
        """
        agent = await get_agent_or_raise(db, agent_id)
        if not agent.is_elevated:
            raise ForbiddenError("Only a super admin can delete queries")

        async with self.locks.lock(query_id):
            query = await get_query_or_raise(db, query_id)
            effects = AfterCommitEffects("delete_query")
            await self.calls.end_all_active_calls_for_query(
                db, query.id, effects,
                reason="query_deleted",
                content="",
                ended_by=agent.id,
                record_message=False,
            )
            await db.flush()

            await db.execute(delete(Message).where(Message.query_id == query.id))
            await db.execute(delete(CallSession).where(CallSession.query_id == query.id))
            await db.execute(delete(CallRequest).where(CallRequest.query_id == query.id))
            await db.delete(query)
            await db.commit()

        logger.warning(f"[Queries] Agent {agent.id} deleted query {query_id}")
        await effects.run()

    # === Read paths ===

    async def get_query(self, db: AsyncSession, query_id: str) -> DonorQuery:
        return await get_query_or_raise(db, query_id)

    async def list_queries(
        self,
        db: AsyncSession,
        status: Optional[QueryStatus] = None,
        assigned_to_id: Optional[str] = None,
        donor_id: Optional[str] = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0
    ) -> List[DonorQuery]:
        stmt = select(DonorQuery)
        if status:
            stmt = stmt.where(DonorQuery.status == status.value)
        if assigned_to_id:
            stmt = stmt.where(DonorQuery.assigned_to_id == assigned_to_id)
        if donor_id:
            stmt = stmt.where(DonorQuery.donor_id == donor_id)
        stmt = stmt.order_by(DonorQuery.created_at.desc()).offset(offset).limit(min(limit, MAX_PAGE_LIMIT))
        result = await db.execute(stmt)
        return list(result.scalars().all())
