from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.models.call_session import CallMode


class SubmitQueryRequest(BaseModel):
    donor: str = Field(..., min_length=1)
    donor_id: str = Field(..., min_length=1)
    test: str
    stage: str
    device: str
    content: Optional[str] = None
    fcm_token: Optional[str] = None
    call_type: Optional[CallMode] = None


class TransferQueryRequest(BaseModel):
    target_agent_id: str
    note: Optional[str] = None


class DonorCloseQueryRequest(BaseModel):
    donor_id: str


class ReminderRequest(BaseModel):
    message: Optional[str] = None


class QueryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    donor: str
    donor_id: str
    test: str
    stage: str
    device: str
    content: Optional[str] = None
    call_type: Optional[str] = None
    status: str
    assigned_to_id: Optional[str] = None
    resolved_by_id: Optional[str] = None
    transferred_to_id: Optional[str] = None
    transferred_to: Optional[str] = None
    transfer_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class QueryListResponse(BaseModel):
    queries: List[QueryResponse]
    limit: int
    offset: int
