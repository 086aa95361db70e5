"""
Session management module.

Provides the NotificationSession for driving notification sockets.
"""
from .notification_session import NotificationSession

__all__ = ["NotificationSession"]
