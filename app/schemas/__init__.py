"""
Schemas Package

Pydantic models for API and WebSocket events.
"""

from app.schemas.websocket_events import (
    WebSocketEventBase,
    JoinQueryRoomEvent,
    LeaveQueryRoomEvent,
    PingEvent,
    ClientEvent,
    client_event_adapter,
)

__all__ = [
    "WebSocketEventBase",
    "JoinQueryRoomEvent",
    "LeaveQueryRoomEvent",
    "PingEvent",
    "ClientEvent",
    "client_event_adapter",
]
