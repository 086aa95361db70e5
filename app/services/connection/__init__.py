"""
Connection Management Module

Re-exports the notification gateway building blocks. The application
builds one ConnectionManager at startup (see app.services.container).
"""
from .models import ClientConnection, admins_room, query_room, user_room
from .manager import ConnectionManager
from .notifications import NotificationGateway

__all__ = [
    "ClientConnection",
    "ConnectionManager",
    "NotificationGateway",
    "admins_room",
    "query_room",
    "user_room",
]
