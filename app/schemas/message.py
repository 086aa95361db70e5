from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.models.message import SenderType


class AgentMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)


class DonorMessageRequest(BaseModel):
    donor_id: str
    content: str = Field(..., min_length=1)


class MarkReadRequest(BaseModel):
    reader_type: SenderType


class MarkReadResponse(BaseModel):
    query_id: str
    updated: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    query_id: str
    content: str
    sender_type: str
    sender_id: Optional[str] = None
    message_type: str
    call_mode: Optional[str] = None
    room_name: Optional[str] = None
    call_session_id: Optional[str] = None
    call_request_id: Optional[str] = None
    user_token: Optional[str] = None
    is_read: bool
    is_from_admin: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MessageListResponse(BaseModel):
    messages: List[MessageResponse]
    limit: int
    offset: int
