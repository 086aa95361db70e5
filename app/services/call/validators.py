"""
Call Validators

Precondition checks shared by the call and query lifecycles:
- Query still open
- Agent authority over a query
- Single active call per query
- Picking the call request an accept acts on
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.agent import Agent
from app.models.call_request import CallRequest
from app.models.query import DonorQuery
from app.services.core.repositories import (
    find_active_sessions,
    find_latest_pending_request,
    get_call_request_or_raise,
)
from app.services.exceptions import (
    ActiveCallExistsError,
    CallRequestAlreadyResolvedError,
    CallRequestNotFoundError,
    ForbiddenError,
    InvalidStateError,
)


def ensure_query_open(query: DonorQuery) -> None:
    """
    Raises:
        InvalidStateError if the query is RESOLVED or TRANSFERRED
    """
    if query.is_terminal:
        raise InvalidStateError(f"Query {query.id} is already {query.status}")


def ensure_agent_can_act(query: DonorQuery, agent: Agent) -> None:
    """
    Only the assigned agent or an elevated agent may act on a query.

    Raises:
        ForbiddenError otherwise
    """
    if agent.is_elevated:
        return
    if query.assigned_to_id and query.assigned_to_id == agent.id:
        return
    raise ForbiddenError(f"Agent {agent.id} is not assigned to query {query.id}")


async def ensure_no_active_call(db: AsyncSession, query_id: str) -> None:
    """
    Raises:
        ActiveCallExistsError carrying the live session, so the caller can
        offer to join it instead of opening a second room
    """
    active = await find_active_sessions(db, query_id)
    if active:
        session = active[0]
        raise ActiveCallExistsError(
            f"Query {query_id} already has an active call",
            active_session_id=session.id,
            room_name=session.room_name,
        )


async def resolve_call_request(
    db: AsyncSession,
    query_id: str,
    request_id: Optional[str] = None
) -> CallRequest:
    """
    The request an accept acts on: the explicit one, else the most recent
    PENDING request of the query.

    Raises:
        CallRequestNotFoundError, CallRequestAlreadyResolvedError
    """
    if request_id:
        request = await get_call_request_or_raise(db, request_id)
        if request.query_id != query_id:
            raise CallRequestNotFoundError(f"Call request {request_id} does not belong to query {query_id}")
        if not request.is_pending:
            raise CallRequestAlreadyResolvedError(f"Call request {request_id} is already {request.status}")
        return request

    request = await find_latest_pending_request(db, query_id)
    if not request:
        raise CallRequestNotFoundError(f"No pending call request for query {query_id}")
    return request
