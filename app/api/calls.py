"""
Calls API - Endpoints for call management

Implements:
- Direct call start by an agent
- Donor call requests (create, accept, reject)
- Call status updates and termination
- Call session reads
"""
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_agent, get_db, get_services, to_http_exception
from app.models.agent import Agent
from app.schemas.call import (
    AcceptCallRequestRequest,
    AcceptCallResponse,
    CallRequestListResponse,
    CallRequestResponse,
    CallSessionListResponse,
    CallSessionResponse,
    DonorEndCallRequest,
    RejectCallResponse,
    RequestCallRequest,
    RequestCallResponse,
    StartCallRequest,
    StartCallResponse,
    UpdateCallStatusRequest,
)
from app.schemas.message import MessageResponse
from app.services.container import DeskServices
from app.services.exceptions import DeskServiceError, ForbiddenError

router = APIRouter(tags=["calls"])


# === Per-query endpoints ===

@router.post("/queries/{query_id}/calls", response_model=StartCallResponse, status_code=status.HTTP_201_CREATED)
async def start_call(
    query_id: str,
    req: StartCallRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    """
    Start a call on a query.

    Fails with 409 (and the live session's room) when a call is already
    active on the query, 502 when the video provider fails.
    """
    try:
        session, room_url = await services.calls.start_call(db, query_id, agent.id, req.mode)
    except DeskServiceError as e:
        raise to_http_exception(e)

    return StartCallResponse(
        session=CallSessionResponse.model_validate(session),
        room_url=room_url,
        admin_token=session.admin_token,
        user_token=session.user_token,
    )


@router.get("/queries/{query_id}/calls", response_model=CallSessionListResponse)
async def list_calls(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    try:
        sessions = await services.calls.get_calls_for_query(db, query_id)
    except DeskServiceError as e:
        raise to_http_exception(e)
    return CallSessionListResponse(calls=[CallSessionResponse.model_validate(s) for s in sessions])


@router.get("/queries/{query_id}/calls/active", response_model=Optional[CallSessionResponse])
async def get_active_call(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """The live call of a query, or null."""
    return await services.calls.get_active_call(db, query_id)


@router.post(
    "/queries/{query_id}/call-requests",
    response_model=RequestCallResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_call(
    query_id: str,
    req: RequestCallRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """Donor asks for a call."""
    try:
        call_request, message = await services.calls.request_call(
            db, query_id, req.mode, message=req.message, donor_id=req.donor_id
        )
    except DeskServiceError as e:
        raise to_http_exception(e)
    return RequestCallResponse(
        call_request=CallRequestResponse.model_validate(call_request),
        message=MessageResponse.model_validate(message),
    )


@router.get("/queries/{query_id}/call-requests", response_model=CallRequestListResponse)
async def list_pending_call_requests(
    query_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        requests = await services.calls.get_pending_call_requests(db, query_id)
    except DeskServiceError as e:
        raise to_http_exception(e)
    return CallRequestListResponse(call_requests=[CallRequestResponse.model_validate(r) for r in requests])


@router.post("/queries/{query_id}/call-requests/accept", response_model=AcceptCallResponse)
async def accept_call_request(
    query_id: str,
    req: AcceptCallRequestRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    """
    Accept a donor call request and open its call.

    Without request_id the most recent pending request is accepted.
    """
    try:
        session, call_request, message, room_url = await services.calls.accept_call_request(
            db, query_id, agent.id, req.request_id
        )
    except DeskServiceError as e:
        raise to_http_exception(e)

    return AcceptCallResponse(
        session=CallSessionResponse.model_validate(session),
        call_request=CallRequestResponse.model_validate(call_request),
        message=MessageResponse.model_validate(message),
        room_url=room_url,
        admin_token=session.admin_token,
    )


@router.post("/call-requests/{request_id}/reject", response_model=RejectCallResponse)
async def reject_call_request(
    request_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        call_request, message = await services.calls.reject_call_request(db, request_id, agent.id)
    except DeskServiceError as e:
        raise to_http_exception(e)
    return RejectCallResponse(
        call_request=CallRequestResponse.model_validate(call_request),
        message=MessageResponse.model_validate(message),
    )


# === Per-session endpoints ===

@router.get("/calls/sessions/{session_id}", response_model=CallSessionResponse)
async def get_call_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    try:
        return await services.calls.get_call_session(db, session_id)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.patch("/calls/{room_name}/status", response_model=CallSessionResponse)
async def update_call_status(
    room_name: str,
    req: UpdateCallStatusRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """Client-reported call status (STARTED on join, ENDED on hang-up)."""
    try:
        return await services.calls.update_call_status(db, room_name, req.status)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/calls/{room_name}/end", response_model=CallSessionResponse)
async def end_call(
    room_name: str,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services),
    agent: Agent = Depends(get_current_agent)
):
    try:
        return await services.calls.end_call(db, room_name, agent.id)
    except DeskServiceError as e:
        raise to_http_exception(e)


@router.post("/calls/{room_name}/end/donor", response_model=CallSessionResponse)
async def donor_end_call(
    room_name: str,
    req: DonorEndCallRequest,
    db: AsyncSession = Depends(get_db),
    services: DeskServices = Depends(get_services)
):
    """Donor hangs up."""
    try:
        session = await services.calls.get_session_by_room(db, room_name)
        query = await services.queries.get_query(db, session.query_id)
        if query.donor_id != req.donor_id:
            raise ForbiddenError("Only the query's donor can end this call")
        return await services.calls.end_call(db, room_name)
    except DeskServiceError as e:
        raise to_http_exception(e)
