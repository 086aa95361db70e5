"""
Queries API - Endpoints for the donor query lifecycle

Implements:
- Donor submission and self-close
- Agent accept, resolve, transfer, reminder
- Super admin removal
- Query reads
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_agent, get_db, get_services, to_http_exception
from app.config.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from app.models.agent import Agent
from app.models.query import QueryStatus
from app.schemas.query import (
    DonorCloseQueryRequest,
    QueryListResponse,
    QueryResponse,
    ReminderRequest,
    SubmitQueryRequest,
    TransferQueryRequest,
)
from app.services.container import DeskServices
from app.services.exceptions import DeskServiceError

router = APIRouter(prefix="/queries", tags=["queries"])


@router.post("", response_model=QueryResponse, status_code=status.HTTP_201_CREATED)
async def submit_query(
    req: SubmitQueryRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """
    Submit a new donor query.

    Fails with 409 while the donor still has an open query.
    """
    try:
        query = await services.queries.submit_query(
            db,
            donor=req.donor,
            donor_id=req.donor_id,
            test=req.test,
            stage=req.stage,
            device=req.device,
            content=req.content,
            fcm_token=req.fcm_token,
            call_type=req.call_type.value if req.call_type else None,
        )
    except DeskServiceError as e:
        raise to_http_exception(e)
    return query


@router.get("", response_model=QueryListResponse)
async def list_queries(
    status_filter: Optional[QueryStatus] = Query(None, alias="status"),
    assigned_to_id: Optional[str] = None,
    donor_id: Optional[str] = None,
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    queries = await services.queries.list_queries(
        db, status=status_filter, assigned_to_id=assigned_to_id, donor_id=donor_id,
        limit=limit, offset=offset,
    )
    return QueryListResponse(
        queries=[QueryResponse.model_validate(q) for q in queries],
        limit=limit,
        offset=offset,
    )


@router.get("/{query_id}", response_model=QueryResponse)
async def get_query(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    try:
        return await services.queries.get_query(db, query_id)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/{query_id}/accept", response_model=QueryResponse)
async def accept_query(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    """Assign the query to the calling agent."""
    try:
        return await services.queries.accept_query(db, query_id, agent.id)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/{query_id}/resolve", response_model=QueryResponse)
async def resolve_query(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    """
    Resolve a query. Only the assigned agent or a super admin may do this.
    Active calls on the query are ended.
    """
    try:
        return await services.queries.resolve_query(db, query_id, agent.id)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/{query_id}/transfer", response_model=QueryResponse)
async def transfer_query(
    query_id: str,
    req: TransferQueryRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        return await services.queries.transfer_query(
            db, query_id, agent.id, req.target_agent_id, req.note
        )
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/{query_id}/close", response_model=QueryResponse)
async def donor_close_query(
    query_id: str,
    req: DonorCloseQueryRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """Donor closes their own query."""
    try:
        return await services.queries.donor_close_query(db, query_id, req.donor_id)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/{query_id}/remind", response_model=QueryResponse)
async def send_reminder(
    query_id: str,
    req: ReminderRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        return await services.queries.send_reminder(db, query_id, agent.id, req.message)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.delete("/{query_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_query(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        await services.queries.delete_query(db, query_id, agent.id)
    except DeskServiceError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
