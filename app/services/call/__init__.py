"""
Call Service Module

Call sessions and donor call requests. CallService is constructed once
by app.services.container with its collaborators.
"""
from .service import CallService
from .lifecycle import close_session, delete_room_quietly

__all__ = [
    "CallService",
    "close_session",
    "delete_room_quietly",
]
