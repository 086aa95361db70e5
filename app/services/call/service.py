"""
Call Service - Core Call Management

Main service class for call operations:
- Direct call start and donor call requests (accept, reject)
- Call state management (join, end)
- Cascade end used by query resolution/transfer

Every mutation of one query's calls runs under that query's lock. Order
inside an operation: validate, talk to the room provider, commit all
local writes at once, then run the queued notifications.
"""
import uuid
from typing import List, Optional, Tuple
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import (
    AGENT_JOINED_CALL_TEXT,
    CALL_ENDED_BY_DONOR_TEXT,
    CALL_ENDED_TEXT,
    CALL_EXPIRED_TEXT,
    CALL_OVERRUN_MARKER,
    CALL_OVERRUN_TEXT,
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
)
from app.models.agent import Agent
from app.models.call_request import CallRequest, CallRequestStatus
from app.models.call_session import CallSession, CallMode, CallStatus
from app.models.message import Message, MessageType, SenderType
from app.models.query import DonorQuery
from app.services.connection import NotificationGateway
from app.services.core import AfterCommitEffects, QueryLockRegistry
from app.services.core.repositories import (
    answer_pending_request,
    find_active_sessions,
    find_request_message,
    get_agent_or_raise,
    get_call_request_or_raise,
    get_query_or_raise,
    get_session_by_room_or_raise,
    has_message_containing,
)
from app.services.email_service import EmailService
from app.services.exceptions import (
    ActiveCallExistsError,
    CallRequestAlreadyResolvedError,
    CallSessionNotFoundError,
    DeskServiceError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
)
from app.services.message_service import MessageService
from app.services.metrics import call_requests, calls_started
from app.services.protocols import PushSenderProtocol, RoomProviderProtocol

from .lifecycle import close_session, delete_room_quietly
from .validators import (
    ensure_agent_can_act,
    ensure_no_active_call,
    ensure_query_open,
    resolve_call_request,
)

logger = logging.getLogger(__name__)


class CallService:
    """Service for call sessions and donor call requests."""

    def __init__(
        self,
        room_provider: RoomProviderProtocol,
        gateway: NotificationGateway,
        messages: MessageService,
        push: PushSenderProtocol,
        email: EmailService,
        locks: QueryLockRegistry,
        room_expiry_minutes: int = 120
    ):
        self.room_provider = room_provider
        self.gateway = gateway
        self.messages = messages
        self.push = push
        self.email = email
        self.locks = locks
        self.room_expiry_minutes = room_expiry_minutes

    # === Shared start path ===

    async def _open_session(
        self,
        db: AsyncSession,
        query: DonorQuery,
        agent: Agent,
        mode: CallMode,
        effects: AfterCommitEffects,
        originating_request: Optional[CallRequest] = None
    ) -> Tuple[CallSession, str]:
        """
        Create the provider room and tokens and stage a CREATED session.

        No database reads may follow this call before the commit: the new
        rows are flushed at commit time, where the partial unique index
        turns a lost race into an IntegrityError.
        """
        await ensure_no_active_call(db, query.id)

        room = await self.room_provider.create_room(mode.value, self.room_expiry_minutes)
        try:
            admin_token = await self.room_provider.create_token(room.name, True, mode.value)
            user_token = await self.room_provider.create_token(room.name, False, mode.value)
        except ExternalServiceError:
            await delete_room_quietly(self.room_provider, room.name)
            raise

        session = CallSession(
            id=str(uuid.uuid4()),
            query_id=query.id,
            agent_id=agent.id,
            room_name=room.name,
            mode=mode.value,
            status=CallStatus.CREATED.value,
            admin_token=admin_token,
            user_token=user_token,
            originating_request_id=originating_request.id if originating_request else None,
        )
        db.add(session)

        # An accepted request already announces the call on its own message
        if originating_request is None:
            message = self.messages.record(
                db, query.id, f"Call started by admin. Mode: {mode.value}",
                sender_type=SenderType.ADMIN,
                sender_id=agent.id,
                message_type=MessageType.CALL_STARTED,
                call_mode=mode.value,
                room_name=room.name,
                call_session_id=session.id,
                user_token=user_token,
                admin_token=admin_token,
            )
            effects.add(self.gateway.message_created, message)

        effects.add(
            self.gateway.call_started, session, room.url, agent.id,
            originating_request.id if originating_request else None,
        )
        effects.add(self.gateway.active_call_started, session)
        if query.fcm_token:
            effects.add(
                self.push.send_notification,
                query.fcm_token,
                "Incoming call",
                f"{agent.name} started a {mode.value.lower()} call",
                {
                    "type": "call_started",
                    "queryId": query.id,
                    "callSessionId": session.id,
                    "roomName": room.name,
                    "mode": mode.value,
                },
            )
        return session, room.url

    async def _commit_new_session(
        self, db: AsyncSession, session: CallSession, effects: AfterCommitEffects
    ) -> None:
        query_id, room_name = session.query_id, session.room_name
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            effects.discard()
            logger.warning(f"[Calls] Lost active-call race on query {query_id}, discarding {room_name}")
            await delete_room_quietly(self.room_provider, room_name)
            raise ActiveCallExistsError(f"Query {query_id} already has an active call") from e

    # === Direct start ===

    async def start_call(
        self,
        db: AsyncSession,
        query_id: str,
        agent_id: str,
        mode: CallMode
    ) -> Tuple[CallSession, str]:
        """
        Open a call on a query without a donor request.

        Returns:
            (session, room_url)

        Raises:
            QueryNotFoundError, AgentNotFoundError, InvalidStateError,
            ActiveCallExistsError, ExternalServiceError
        """
        async with self.locks.lock(query_id):
            query = await get_query_or_raise(db, query_id)
            agent = await get_agent_or_raise(db, agent_id)
            ensure_query_open(query)

            effects = AfterCommitEffects("start_call")
            session, room_url = await self._open_session(db, query, agent, mode, effects)
            await self._commit_new_session(db, session, effects)

        calls_started.labels(origin="direct").inc()
        logger.info(f"[Calls] Agent {agent_id} started {mode.value} call {session.room_name} on query {query_id}")
        await effects.run()
        return session, room_url

    # === Call requests ===

    async def request_call(
        self,
        db: AsyncSession,
        query_id: str,
        mode: CallMode,
        message: Optional[str] = None,
        donor_id: Optional[str] = None
    ) -> Tuple[CallRequest, Message]:
        """
        Record a donor's call request and its linked SYSTEM message.

        The message id is what accept/reject annotate later.
        """
        query = await get_query_or_raise(db, query_id)
        if donor_id and donor_id != query.donor_id:
            raise ForbiddenError("Only the query's donor can request a call")
        ensure_query_open(query)

        assigned = None
        if query.assigned_to_id:
            assigned = await db.get(Agent, query.assigned_to_id)

        text = f"Donor requested a {mode.value.lower()} call"
        request = CallRequest(
            id=str(uuid.uuid4()),
            query_id=query.id,
            mode=mode.value,
            message=message or text,
            status=CallRequestStatus.PENDING.value,
        )
        db.add(request)
        request_message = self.messages.record(
            db, query.id, text,
            message_type=MessageType.SYSTEM,
            call_mode=mode.value,
            call_request_id=request.id,
        )
        await db.commit()

        call_requests.labels(outcome="requested").inc()
        logger.info(f"[Calls] Call request {request.id} ({mode.value}) on query {query.id}")

        effects = AfterCommitEffects("request_call")
        effects.add(self.gateway.message_created, request_message)
        if assigned:
            if assigned.fcm_token:
                effects.add(
                    self.push.send_notification,
                    assigned.fcm_token,
                    "Call Request",
                    f"Donor requested a {mode.value.lower()} call for query #{query.id}",
                    {"type": "call_request", "queryId": query.id, "callRequestId": request.id, "mode": mode.value},
                )
            if assigned.email:
                effects.add(self.email.send_call_request_email, [assigned.email], query, mode.value, request.message)
        await effects.run()
        return request, request_message

    async def accept_call_request(
        self,
        db: AsyncSession,
        query_id: str,
        agent_id: str,
        request_id: Optional[str] = None
    ) -> Tuple[CallSession, CallRequest, Message, str]:
        """
        Accept a call request and open its call as one unit.

        The request only flips to ACCEPTED in the same commit that creates
        the session; a provider failure leaves it PENDING. The request's
        linked message is annotated in place.

        Returns:
            (session, request, annotated message, room_url)
        """
        async with self.locks.lock(query_id):
            query = await get_query_or_raise(db, query_id)
            agent = await get_agent_or_raise(db, agent_id)
            ensure_query_open(query)
            ensure_agent_can_act(query, agent)

            request = await resolve_call_request(db, query.id, request_id)
            message = await find_request_message(db, request.id)
            mode = CallMode(request.mode)

            effects = AfterCommitEffects("accept_call_request")
            # The answer shares the session's transaction: any failure below rolls both back
            if not await answer_pending_request(db, request, CallRequestStatus.ACCEPTED, agent.id):
                request_id = request.id
                await db.rollback()
                raise CallRequestAlreadyResolvedError(f"Call request {request_id} was answered by another request")
            try:
                session, room_url = await self._open_session(
                    db, query, agent, mode, effects, originating_request=request
                )
            except DeskServiceError:
                await db.rollback()
                raise

            join_link = f"[Click here to join the {mode.value.lower()} call]({room_url})"
            call_fields = dict(
                call_mode=mode.value,
                room_name=session.room_name,
                call_session_id=session.id,
                user_token=session.user_token,
                admin_token=session.admin_token,
            )
            if message:
                self.messages.annotate(
                    message,
                    f"\n\n**✅ ACCEPTED by {agent.name}**\n\n**Join the call:** {join_link}",
                    **call_fields
                )
                effects.add(self.gateway.enhanced_message, message)
            else:
                logger.warning(f"[Calls] Call request {request.id} has no linked message, recording a new one")
                message = self.messages.record(
                    db, query.id, f"Call request accepted by {agent.name}. {join_link}",
                    message_type=MessageType.SYSTEM,
                    call_request_id=request.id,
                    **call_fields
                )
                effects.add(self.gateway.message_created, message)

            await self._commit_new_session(db, session, effects)

        calls_started.labels(origin="request").inc()
        call_requests.labels(outcome="accepted").inc()
        logger.info(f"[Calls] Agent {agent_id} accepted call request {request.id} -> {session.room_name}")
        await effects.run()
        return session, request, message, room_url

    async def reject_call_request(
        self,
        db: AsyncSession,
        request_id: str,
        agent_id: str
    ) -> Tuple[CallRequest, Message]:
        """Reject a pending call request and annotate its message."""
        request = await get_call_request_or_raise(db, request_id)

        async with self.locks.lock(request.query_id):
            await db.refresh(request)
            if not request.is_pending:
                raise CallRequestAlreadyResolvedError(f"Call request {request_id} is already {request.status}")

            query = await get_query_or_raise(db, request.query_id)
            agent = await get_agent_or_raise(db, agent_id)
            ensure_agent_can_act(query, agent)
            message = await find_request_message(db, request.id)

            effects = AfterCommitEffects("reject_call_request")
            if not await answer_pending_request(db, request, CallRequestStatus.REJECTED, agent.id):
                await db.rollback()
                raise CallRequestAlreadyResolvedError(f"Call request {request_id} was answered by another request")
            if message:
                self.messages.annotate(message, f"\n\n**❌ REJECTED by {agent.name}**")
                effects.add(self.gateway.enhanced_message, message)
            else:
                logger.warning(f"[Calls] Call request {request.id} has no linked message, recording a new one")
                message = self.messages.record(
                    db, query.id, f"Call request rejected by {agent.name}",
                    message_type=MessageType.SYSTEM,
                    call_mode=request.mode,
                    call_request_id=request.id,
                )
                effects.add(self.gateway.message_created, message)

            await db.commit()

        call_requests.labels(outcome="rejected").inc()
        logger.info(f"[Calls] Agent {agent_id} rejected call request {request_id}")
        if query.fcm_token:
            effects.add(
                self.push.send_notification,
                query.fcm_token,
                "Call Request",
                f"{agent.name} could not take your call right now",
                {"type": "call_request_rejected", "queryId": query.id, "callRequestId": request.id},
            )
        await effects.run()
        return request, message

    # === Session state ===

    async def _end_locked(
        self,
        db: AsyncSession,
        session: CallSession,
        agent_id: Optional[str],
        effects: AfterCommitEffects
    ) -> None:
        if agent_id:
            await get_agent_or_raise(db, agent_id)
            close_session(
                db, session,
                gateway=self.gateway,
                room_provider=self.room_provider,
                effects=effects,
                reason="ended",
                content=CALL_ENDED_TEXT,
                sender_type=SenderType.ADMIN,
                sender_id=agent_id,
                ended_by=agent_id,
            )
        else:
            query = await get_query_or_raise(db, session.query_id)
            close_session(
                db, session,
                gateway=self.gateway,
                room_provider=self.room_provider,
                effects=effects,
                reason="ended_by_donor",
                content=CALL_ENDED_BY_DONOR_TEXT,
                sender_type=SenderType.DONOR,
                sender_id=query.donor_id,
                ended_by=query.donor_id,
            )

    async def end_call(self, db: AsyncSession, room_name: str, agent_id: Optional[str] = None) -> CallSession:
        """
        End a call by room name. Without an agent id the donor ended it.

        Ending an already ENDED session is a no-op.
        """
        session = await get_session_by_room_or_raise(db, room_name)

        async with self.locks.lock(session.query_id):
            await db.refresh(session)
            if not session.is_active:
                logger.info(f"[Calls] Session {session.room_name} already ended")
                return session

            effects = AfterCommitEffects("end_call")
            await self._end_locked(db, session, agent_id, effects)
            await db.commit()

        await effects.run()
        return session

    async def update_call_status(self, db: AsyncSession, room_name: str, status: CallStatus) -> CallSession:
        """
        Apply a status reported by a client.

        CREATED -> STARTED records the "agent joined" message; ENDED closes
        the session on behalf of its agent. Nothing leaves ENDED.
        """
        session = await get_session_by_room_or_raise(db, room_name)

        async with self.locks.lock(session.query_id):
            await db.refresh(session)
            effects = AfterCommitEffects("update_call_status")

            if status == CallStatus.ENDED:
                if not session.is_active:
                    return session
                # Reported by a call client: no agent lookup, the starting
                # agent may have been deactivated since
                close_session(
                    db, session,
                    gateway=self.gateway,
                    room_provider=self.room_provider,
                    effects=effects,
                    reason="ended",
                    content=CALL_ENDED_TEXT,
                    sender_type=SenderType.ADMIN if session.agent_id else SenderType.SYSTEM,
                    sender_id=session.agent_id,
                    ended_by=session.agent_id,
                )
            elif session.status == CallStatus.ENDED.value:
                raise InvalidStateError(f"Call session {session.room_name} has already ended")
            elif status == CallStatus.STARTED:
                if session.status == CallStatus.STARTED.value:
                    return session
                session.mark_started()
                message = self.messages.record(
                    db, session.query_id, AGENT_JOINED_CALL_TEXT,
                    message_type=MessageType.SYSTEM,
                    call_mode=session.mode,
                    room_name=session.room_name,
                    call_session_id=session.id,
                )
                effects.add(self.gateway.message_created, message)
                effects.add(self.gateway.active_call_started, session)
            elif session.status != status.value:
                raise InvalidStateError(f"Call session {session.room_name} cannot go back to {status.value}")
            else:
                return session

            await db.commit()

        logger.info(f"[Calls] Session {session.room_name} -> {session.status}")
        await effects.run()
        return session

    async def end_all_active_calls_for_query(
        self,
        db: AsyncSession,
        query_id: str,
        effects: AfterCommitEffects,
        *,
        reason: str,
        content: str,
        ended_by: Optional[str] = None,
        record_message: bool = True
    ) -> List[CallSession]:
        """
        Cascade end inside the caller's transaction.

        The caller holds the query lock and commits.
        """
        sessions = await find_active_sessions(db, query_id)
        for session in sessions:
            close_session(
                db, session,
                gateway=self.gateway,
                room_provider=self.room_provider,
                effects=effects,
                reason=reason,
                content=content,
                ended_by=ended_by,
                record_message=record_message,
            )
        if sessions:
            logger.info(f"[Calls] Ending {len(sessions)} active call(s) on query {query_id}: {reason}")
        return sessions

    # === Sweeper hooks ===

    async def expire_session(self, db: AsyncSession, session: CallSession) -> bool:
        """End a session that outlived the room lifetime. False if it was already ended."""
        async with self.locks.lock(session.query_id):
            await db.refresh(session)
            if not session.is_active:
                return False

            effects = AfterCommitEffects("expire_session")
            close_session(
                db, session,
                gateway=self.gateway,
                room_provider=self.room_provider,
                effects=effects,
                reason="expired",
                content=CALL_EXPIRED_TEXT,
            )
            await db.commit()

        await effects.run()
        return True

    async def flag_overrun(self, db: AsyncSession, session: CallSession) -> bool:
        """Post the one-time overrun notice on a long STARTED call. The call keeps running."""
        async with self.locks.lock(session.query_id):
            await db.refresh(session)
            if session.status != CallStatus.STARTED.value:
                return False
            if await has_message_containing(db, session.id, CALL_OVERRUN_MARKER):
                return False

            message = self.messages.record(
                db, session.query_id, CALL_OVERRUN_TEXT,
                message_type=MessageType.SYSTEM,
                call_mode=session.mode,
                room_name=session.room_name,
                call_session_id=session.id,
            )
            await db.commit()

        logger.info(f"[Calls] Session {session.room_name} passed the standard duration")
        effects = AfterCommitEffects("flag_overrun")
        effects.add(self.gateway.message_created, message)
        await effects.run()
        return True

    # === Read paths ===

    async def get_call_session(self, db: AsyncSession, session_id: str) -> CallSession:
        session = await db.get(CallSession, session_id)
        if not session:
            raise CallSessionNotFoundError(f"Call session {session_id} not found")
        return session

    async def get_calls_for_query(
        self,
        db: AsyncSession,
        query_id: str,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0
    ) -> List[CallSession]:
        await get_query_or_raise(db, query_id)
        result = await db.execute(
            select(CallSession)
            .where(CallSession.query_id == query_id)
            .order_by(CallSession.created_at.desc())
            .offset(offset)
            .limit(min(limit, MAX_PAGE_LIMIT))
        )
        return list(result.scalars().all())

    async def get_active_call(self, db: AsyncSession, query_id: str) -> Optional[CallSession]:
        sessions = await find_active_sessions(db, query_id)
        return sessions[0] if sessions else None

    async def get_pending_call_requests(self, db: AsyncSession, query_id: str) -> List[CallRequest]:
        await get_query_or_raise(db, query_id)
        result = await db.execute(
            select(CallRequest)
            .where(CallRequest.query_id == query_id, CallRequest.status == CallRequestStatus.PENDING.value)
            .order_by(CallRequest.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_session_by_room(self, db: AsyncSession, room_name: str) -> CallSession:
        return await get_session_by_room_or_raise(db, room_name)
