"""
Messages API - Query conversation endpoints

Agent replies move a query to IN_PROGRESS, donor replies to
PENDING_REPLY; closed queries keep their status.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_agent, get_db, get_services, to_http_exception
from app.config.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from app.models.agent import Agent
from app.models.message import MessageType, SenderType
from app.schemas.message import (
    AgentMessageRequest,
    DonorMessageRequest,
    MarkReadRequest,
    MarkReadResponse,
    MessageListResponse,
    MessageResponse,
)
from app.services.container import DeskServices
from app.services.exceptions import DeskServiceError

router = APIRouter(prefix="/queries/{query_id}/messages", tags=["messages"])


@router.get("", response_model=MessageListResponse)
async def list_messages(
    query_id: str,
    message_type: Optional[MessageType] = None,
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """Conversation of a query, oldest first."""
    try:
        messages = await services.messages.list_messages(
            db, query_id, limit=limit, offset=offset, message_type=message_type
        )
    except DeskServiceError as e:
        raise to_http_exception(e)
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in messages],
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def post_agent_message(
    query_id: str,
    req: AgentMessageRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        return await services.messages.post_message(db, query_id, SenderType.ADMIN, agent.id, req.content)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/donor", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def post_donor_message(
    query_id: str,
    req: DonorMessageRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    try:
        return await services.messages.post_message(db, query_id, SenderType.DONOR, req.donor_id, req.content)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/read", response_model=MarkReadResponse)
async def mark_messages_read(
    query_id: str,
    req: MarkReadRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    try:
        updated = await services.messages.mark_messages_read(db, query_id, req.reader_type)
    except DeskServiceError as e:
        raise to_http_exception(e)
    return MarkReadResponse(query_id=query_id, updated=updated)
