"""
Agent Model - Support Staff

Agents are provisioned outside this service (seeding/admin tooling); the
lifecycle code only reads them to authorize actions and address notifications.

Roles:
- ADMIN: regular support agent, may act on queries assigned to them
- SUPER_ADMIN: elevated role, may act on any query
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Boolean

from .database import Base


class AgentRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


STAFF_ROLES = {AgentRole.ADMIN.value, AgentRole.SUPER_ADMIN.value}


class Agent(Base):
    """Support agent"""
    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True, index=True)
    role = Column(String(20), nullable=False, default=AgentRole.ADMIN.value)

    # Device token for push notifications
    fcm_token = Column(String(500), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_elevated(self) -> bool:
        return self.role == AgentRole.SUPER_ADMIN.value

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Agent {self.id} ({self.role})>"
