"""
WebSocket Event Schemas

Pydantic models for type-safe handling of client frames on the
notification socket.
"""

from typing import Annotated, Optional, Literal, Union
from pydantic import BaseModel, Field, TypeAdapter


# =============================================================================
# Client -> Server Events
# =============================================================================

class WebSocketEventBase(BaseModel):
    """Base model for all WebSocket events."""
    type: str


class JoinQueryRoomEvent(WebSocketEventBase):
    """Subscribe to a query's events. Donor apps pass their donor id."""
    type: Literal["joinQueryRoom"] = "joinQueryRoom"
    query_id: str = Field(..., min_length=1)
    donor_id: Optional[str] = None


class LeaveQueryRoomEvent(WebSocketEventBase):
    """Unsubscribe from a query's events."""
    type: Literal["leaveQueryRoom"] = "leaveQueryRoom"
    query_id: str = Field(..., min_length=1)


class PingEvent(WebSocketEventBase):
    """Simple ping for latency check."""
    type: Literal["ping"] = "ping"


ClientEvent = Annotated[
    Union[JoinQueryRoomEvent, LeaveQueryRoomEvent, PingEvent],
    Field(discriminator="type"),
]

client_event_adapter = TypeAdapter(ClientEvent)
