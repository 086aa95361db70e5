from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from app.models.call_session import CallMode, CallStatus
from app.schemas.message import MessageResponse


class StartCallRequest(BaseModel):
    mode: CallMode = CallMode.VIDEO


class RequestCallRequest(BaseModel):
    mode: CallMode = CallMode.VIDEO
    message: Optional[str] = None
    donor_id: Optional[str] = None


class AcceptCallRequestRequest(BaseModel):
    # Most recent pending request when omitted
    request_id: Optional[str] = None


class DonorEndCallRequest(BaseModel):
    donor_id: str


class UpdateCallStatusRequest(BaseModel):
    status: CallStatus


class CallSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    query_id: str
    agent_id: Optional[str] = None
    room_name: str
    mode: str
    status: str
    originating_request_id: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None


class CallRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    query_id: str
    mode: str
    message: Optional[str] = None
    status: str
    agent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StartCallResponse(BaseModel):
    session: CallSessionResponse
    room_url: str
    admin_token: str
    user_token: str


class RequestCallResponse(BaseModel):
    call_request: CallRequestResponse
    message: MessageResponse


class AcceptCallResponse(BaseModel):
    session: CallSessionResponse
    call_request: CallRequestResponse
    message: MessageResponse
    room_url: str
    admin_token: str


class RejectCallResponse(BaseModel):
    call_request: CallRequestResponse
    message: MessageResponse


class CallSessionListResponse(BaseModel):
    calls: List[CallSessionResponse]


class CallRequestListResponse(BaseModel):
    call_requests: List[CallRequestResponse]
