"""
CallSession Model - One Concrete Call Attempt

State machine:
    CREATED --(join)--> STARTED --(end | expire)--> ENDED
    CREATED --(end | expire)--> ENDED

At most one session per query may be CREATED or STARTED. The partial unique
index below backs the orchestrator's check across processes.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, text

from .database import Base


class CallMode(str, enum.Enum):
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"
    SCREEN = "SCREEN"


class CallStatus(str, enum.Enum):
    CREATED = "CREATED"
    STARTED = "STARTED"
    ENDED = "ENDED"


ACTIVE_CALL_STATUSES = (CallStatus.CREATED.value, CallStatus.STARTED.value)

_ACTIVE_PREDICATE = text("status IN ('CREATED', 'STARTED')")


class CallSession(Base):
    """Call session model"""
    __tablename__ = "call_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    query_id = Column(String(36), ForeignKey("donor_queries.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String(36), ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)

    # Opaque provider handle
    room_name = Column(String(255), unique=True, nullable=False, index=True)
    mode = Column(String(10), nullable=False, default=CallMode.VIDEO.value)
    status = Column(String(10), nullable=False, default=CallStatus.CREATED.value, index=True)

    # Join tokens: owner token for the agent, plain token for the donor
    admin_token = Column(Text, nullable=True)
    user_token = Column(Text, nullable=True)

    # Set when the session was created by accepting a donor call request
    originating_request_id = Column(String(36), ForeignKey("call_requests.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_call_sessions_one_active_per_query",
            "query_id",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CALL_STATUSES

    def mark_started(self) -> None:
        self.status = CallStatus.STARTED.value
        self.started_at = datetime.utcnow()

    def mark_ended(self) -> None:
        self.status = CallStatus.ENDED.value
        self.ended_at = datetime.utcnow()

    @property
    def duration_seconds(self):
        if self.started_at and self.ended_at:
            return int((self.ended_at - self.started_at).total_seconds())
        return None

    def to_dict(self, include_tokens: bool = False):
        data = {
            "id": self.id,
            "query_id": self.query_id,
            "agent_id": self.agent_id,
            "room_name": self.room_name,
            "mode": self.mode,
            "status": self.status,
            "originating_request_id": self.originating_request_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
        }
        if include_tokens:
            data["admin_token"] = self.admin_token
            data["user_token"] = self.user_token
        return data

    def __repr__(self):
        return f"<CallSession {self.room_name} {self.status}>"
