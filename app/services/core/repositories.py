"""
Repository Layer - Shared lookups for the lifecycle services.

Fetch-or-raise helpers, the handful of filtered queries that the
query, call and sweeper code all need, and the guarded writes that only
apply while a row is still in the expected state.

Usage:
    from app.services.core.repositories import get_query_or_raise

    query = await get_query_or_raise(db, query_id)
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.models.agent import Agent
from app.models.call_request import CallRequest, CallRequestStatus
from app.models.call_session import CallSession, CallStatus, ACTIVE_CALL_STATUSES
from app.models.message import Message
from app.models.query import DonorQuery, QueryStatus, OPEN_QUERY_STATUSES
from app.services.exceptions import (
    AgentNotFoundError,
    CallRequestNotFoundError,
    CallSessionNotFoundError,
    QueryNotFoundError,
)

logger = logging.getLogger(__name__)


# === Fetch-or-raise ===

async def get_query_or_raise(db: AsyncSession, query_id: str) -> DonorQuery:
    query = await db.get(DonorQuery, query_id)
    if not query:
        raise QueryNotFoundError(f"Query {query_id} not found")
    return query


async def get_agent_or_raise(db: AsyncSession, agent_id: str) -> Agent:
    agent = await db.get(Agent, agent_id)
    if not agent or not agent.is_active:
        raise AgentNotFoundError(f"Agent {agent_id} not found")
    return agent


async def get_call_request_or_raise(db: AsyncSession, request_id: str) -> CallRequest:
    request = await db.get(CallRequest, request_id)
    if not request:
        raise CallRequestNotFoundError(f"Call request {request_id} not found")
    return request


async def get_session_by_room_or_raise(db: AsyncSession, room_name: str) -> CallSession:
    result = await db.execute(select(CallSession).where(CallSession.room_name == room_name))
    session = result.scalar_one_or_none()
    if not session:
        raise CallSessionNotFoundError(f"Call session for room {room_name} not found")
    return session


# === Filtered lookups ===

async def find_open_query_for_donor(db: AsyncSession, donor_id: str) -> Optional[DonorQuery]:
    result = await db.execute(
        select(DonorQuery)
        .where(DonorQuery.donor_id == donor_id, DonorQuery.status.in_(OPEN_QUERY_STATUSES))
        .order_by(DonorQuery.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_active_sessions(db: AsyncSession, query_id: str) -> List[CallSession]:
    result = await db.execute(
        select(CallSession)
        .where(CallSession.query_id == query_id, CallSession.status.in_(ACTIVE_CALL_STATUSES))
        .order_by(CallSession.created_at.asc())
    )
    return list(result.scalars().all())


async def find_latest_pending_request(db: AsyncSession, query_id: str) -> Optional[CallRequest]:
    result = await db.execute(
        select(CallRequest)
        .where(CallRequest.query_id == query_id, CallRequest.status == CallRequestStatus.PENDING.value)
        .order_by(CallRequest.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_request_message(db: AsyncSession, request_id: str) -> Optional[Message]:
    """First message linked to a call request (the one annotated on accept/reject)."""
    result = await db.execute(
        select(Message)
        .where(Message.call_request_id == request_id)
        .order_by(Message.created_at.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_sessions_created_before(db: AsyncSession, cutoff: datetime) -> List[CallSession]:
    result = await db.execute(
        select(CallSession)
        .where(CallSession.status.in_(ACTIVE_CALL_STATUSES), CallSession.created_at < cutoff)
        .order_by(CallSession.created_at.asc())
    )
    return list(result.scalars().all())


async def find_started_sessions_before(db: AsyncSession, cutoff: datetime) -> List[CallSession]:
    result = await db.execute(
        select(CallSession)
        .where(CallSession.status == CallStatus.STARTED.value, CallSession.started_at < cutoff)
        .order_by(CallSession.started_at.asc())
    )
    return list(result.scalars().all())


async def has_message_containing(db: AsyncSession, call_session_id: str, marker: str) -> bool:
    result = await db.execute(
        select(Message.id)
        .where(Message.call_session_id == call_session_id, Message.content.contains(marker))
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


# === Guarded writes ===

async def _update_if(db: AsyncSession, obj, *criteria, **values) -> bool:
    """
    UPDATE one row only while `criteria` still hold in the database.

    Another worker may have moved the row since it was read; the WHERE
    clause is evaluated against the committed row, not the loaded one.
    Returns False when nothing matched.
    """
    model = type(obj)
    result = await db.execute(
        update(model)
        .where(model.id == obj.id, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    # Keep the loaded instance in step without marking it dirty
    for key, value in values.items():
        set_committed_value(obj, key, value)
    return True


async def update_open_query(db: AsyncSession, query: DonorQuery, status: QueryStatus, **values) -> bool:
    """Move a query to `status` (plus extra columns) unless it was closed meanwhile."""
    return await _update_if(
        db, query,
        DonorQuery.status.in_(OPEN_QUERY_STATUSES),
        status=status.value,
        updated_at=datetime.utcnow(),
        **values
    )


async def answer_pending_request(
    db: AsyncSession,
    request: CallRequest,
    status: CallRequestStatus,
    agent_id: str
) -> bool:
    """Record an agent's answer unless the request was answered meanwhile."""
    return await _update_if(
        db, request,
        CallRequest.status == CallRequestStatus.PENDING.value,
        status=status.value,
        agent_id=agent_id,
        updated_at=datetime.utcnow(),
    )
