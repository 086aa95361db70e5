"""
Protocol definitions for external collaborators.

This module defines interfaces (Python Protocols) that allow:
- Swapping implementations (e.g., Daily -> another video provider)
- Testing without real API credentials
- Clear contracts between the lifecycle services and the outside world

Usage:
    from app.services.protocols import RoomProviderProtocol

    async def open_room(provider: RoomProviderProtocol):
        room = await provider.create_room("VIDEO", expiry_minutes=120)
        token = await provider.create_token(room.name, is_owner=True, mode="VIDEO")
"""

from dataclasses import dataclass
from typing import Protocol, Dict, List, Optional


@dataclass
class RoomInfo:
    """Room handle returned by the provider."""
    name: str
    url: str


class RoomProviderProtocol(Protocol):
    """
    Interface for the real-time media room provider.

    Every method raises ExternalServiceError when the provider is
    unreachable, unconfigured or answers with an error.
    """

    async def create_room(self, mode: str, expiry_minutes: int) -> RoomInfo:
        """
        Create a private room.

        Args:
            mode: Call mode (VIDEO, AUDIO, SCREEN)
            expiry_minutes: Provider-side room lifetime

        Returns:
            RoomInfo with the opaque room name and its join URL
        """
        ...

    async def create_token(self, room_name: str, is_owner: bool, mode: str) -> str:
        """
        Issue a join token for one participant.

        Args:
            room_name: Room handle from create_room
            is_owner: True for the agent (privileged), False for the donor
            mode: Call mode, used to pick camera defaults
        """
        ...

    async def delete_room(self, room_name: str) -> None:
        """Delete a room. Deleting an unknown room is not an error."""
        ...

    def room_url(self, room_name: str) -> str:
        """Join URL for a room name."""
        ...


class EmailSenderProtocol(Protocol):
    """
    Interface for transactional email delivery.

    Implementations never raise; they return False when the email
    could not be sent.
    """

    async def send_email(self, to: List[str], subject: str, html: str) -> bool:
        ...


class PushSenderProtocol(Protocol):
    """
    Interface for device push notifications.

    Implementations never raise; they return the provider message id
    or None when nothing was delivered.
    """

    async def send_notification(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None
    ) -> Optional[str]:
        ...
