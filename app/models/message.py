import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Boolean

from .database import Base


class SenderType(str, enum.Enum):
    ADMIN = "ADMIN"
    DONOR = "DONOR"
    SYSTEM = "SYSTEM"


class MessageType(str, enum.Enum):
    QUERY = "QUERY"
    CHAT = "CHAT"
    SYSTEM = "SYSTEM"
    CALL_STARTED = "CALL_STARTED"
    CALL_ENDED = "CALL_ENDED"


class Message(Base):
    """Append-only event attached to a donor query (chat, system note or call event)"""
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    query_id = Column(String(36), ForeignKey("donor_queries.id", ondelete="CASCADE"), nullable=False, index=True)

    content = Column(Text, nullable=False)
    sender_type = Column(String(10), nullable=False, default=SenderType.SYSTEM.value)
    # Agent id for ADMIN, donor id for DONOR, NULL for SYSTEM
    sender_id = Column(String(255), nullable=True, index=True)
    message_type = Column(String(20), nullable=False, default=MessageType.CHAT.value, index=True)

    # Call linkage
    call_mode = Column(String(10), nullable=True)
    room_name = Column(String(255), nullable=True)
    call_session_id = Column(String(36), ForeignKey("call_sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    call_request_id = Column(String(36), ForeignKey("call_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    user_token = Column(Text, nullable=True)
    admin_token = Column(Text, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_from_admin(self) -> bool:
        return self.sender_type == SenderType.ADMIN.value

    def to_dict(self, include_admin_token: bool = False):
        """Convert to dictionary for JSON response"""
        data = {
            "id": self.id,
            "query_id": self.query_id,
            "content": self.content,
            "sender_type": self.sender_type,
            "sender_id": self.sender_id,
            "message_type": self.message_type,
            "call_mode": self.call_mode,
            "room_name": self.room_name,
            "call_session_id": self.call_session_id,
            "call_request_id": self.call_request_id,
            "user_token": self.user_token,
            "is_read": self.is_read,
            "is_from_admin": self.is_from_admin,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_admin_token:
            data["admin_token"] = self.admin_token
        return data

    def __repr__(self):
        return f"<Message {self.id} {self.message_type} in query {self.query_id}>"
