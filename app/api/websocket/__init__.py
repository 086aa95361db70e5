"""
WebSocket API module.

Provides the WebSocket router for real-time call communication.
"""
from .router import router

__all__ = ["router"]
