"""
CallRequest Model - Donor Call Ask

A donor asks for a call; an agent accepts (which creates a CallSession)
or rejects it. PENDING -> ACCEPTED | REJECTED, both terminal.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Text, ForeignKey

from .database import Base


class CallRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class CallRequest(Base):
    """Donor-initiated call request"""
    __tablename__ = "call_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    query_id = Column(String(36), ForeignKey("donor_queries.id", ondelete="CASCADE"), nullable=False, index=True)
    mode = Column(String(10), nullable=False)
    message = Column(Text, nullable=True)
    status = Column(String(10), nullable=False, default=CallRequestStatus.PENDING.value, index=True)

    # Agent who accepted/rejected; NULL while pending
    agent_id = Column(String(36), ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status == CallRequestStatus.PENDING.value

    def to_dict(self):
        return {
            "id": self.id,
            "query_id": self.query_id,
            "mode": self.mode,
            "message": self.message,
            "status": self.status,
            "agent_id": self.agent_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
