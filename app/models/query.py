"""
DonorQuery Model - Donor Support Case

Key Fields:
- `status`: IN_PROGRESS / PENDING_REPLY while open, RESOLVED / TRANSFERRED once closed (terminal)
- `assigned_to_id`: agent who accepted the query
- `transferred_to_*`: target of a transfer, with the free-text note left by the transferring agent
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, text

from .database import Base


class QueryStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_REPLY = "PENDING_REPLY"
    RESOLVED = "RESOLVED"
    TRANSFERRED = "TRANSFERRED"


TERMINAL_QUERY_STATUSES = (QueryStatus.RESOLVED.value, QueryStatus.TRANSFERRED.value)
OPEN_QUERY_STATUSES = (QueryStatus.IN_PROGRESS.value, QueryStatus.PENDING_REPLY.value)

_OPEN_PREDICATE = text("status IN ('IN_PROGRESS', 'PENDING_REPLY')")


class DonorQuery(Base):
    """Donor support query"""
    __tablename__ = "donor_queries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Donor identity (donors are not agents and have no account here)
    donor = Column(String(255), nullable=False)
    donor_id = Column(String(255), nullable=False, index=True)

    # Context reported by the donor app
    test = Column(String(255), nullable=False)
    stage = Column(String(255), nullable=False)
    device = Column(String(255), nullable=False)
    content = Column(Text, nullable=True)
    fcm_token = Column(String(500), nullable=True)
    call_type = Column(String(10), nullable=True)

    status = Column(String(20), nullable=False, default=QueryStatus.PENDING_REPLY.value, index=True)

    assigned_to_id = Column(String(36), ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)
    resolved_by_id = Column(String(36), ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    transferred_to_id = Column(String(36), ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)
    transferred_to = Column(String(255), nullable=True)
    transfer_note = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # One open query per donor
    __table_args__ = (
        Index(
            "uq_donor_queries_one_open_per_donor",
            "donor_id",
            unique=True,
            postgresql_where=_OPEN_PREDICATE,
            sqlite_where=_OPEN_PREDICATE,
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_QUERY_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "donor": self.donor,
            "donor_id": self.donor_id,
            "test": self.test,
            "stage": self.stage,
            "device": self.device,
            "content": self.content,
            "call_type": self.call_type,
            "status": self.status,
            "assigned_to_id": self.assigned_to_id,
            "resolved_by_id": self.resolved_by_id,
            "transferred_to_id": self.transferred_to_id,
            "transferred_to": self.transferred_to,
            "transfer_note": self.transfer_note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DonorQuery {self.id} {self.status}>"
