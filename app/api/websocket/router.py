"""
WebSocket Router - Real-time Notification Endpoint

This is the thin routing layer that delegates to NotificationSession
for all WebSocket session management.
"""
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, Query

from app.api.deps import get_services
from app.services.container import DeskServices
from app.services.session import NotificationSession

router = APIRouter()


@router.websocket("/ws/notifications")
async def notifications_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    services: DeskServices = Depends(get_services)
):
    """
    WebSocket endpoint for dashboard and donor app notifications.

    Query Parameters:
        token: Agent JWT (optional, donors connect anonymously)

    Message Types (JSON):
        - joinQueryRoom: Subscribe to a query's events
        - leaveQueryRoom: Unsubscribe from a query's events
        - ping: Liveness check
    """
    session = NotificationSession(
        websocket=websocket,
        manager=services.connection_manager,
        token=token
    )
    await session.run()
