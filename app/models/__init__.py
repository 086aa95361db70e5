"""
Database Models Package

This module exports all SQLAlchemy models for the support desk.

Tables:
1. agents - Support staff (read-only for this service)
2. donor_queries - Donor support cases and their status
3. messages - Chat, system and call events attached to a query
4. call_requests - Donor asks for a call
5. call_sessions - Concrete call attempts backed by a provider room
"""

from .database import (
    engine,
    AsyncSessionLocal,
    Base,
    init_db,
)

from .agent import Agent, AgentRole, STAFF_ROLES
from .query import DonorQuery, QueryStatus, TERMINAL_QUERY_STATUSES, OPEN_QUERY_STATUSES
from .message import Message, MessageType, SenderType
from .call_request import CallRequest, CallRequestStatus
from .call_session import CallSession, CallMode, CallStatus, ACTIVE_CALL_STATUSES

__all__ = [
    # Database utilities
    "engine",
    "AsyncSessionLocal",
    "Base",
    "init_db",

    # Models
    "Agent",
    "AgentRole",
    "STAFF_ROLES",
    "DonorQuery",
    "QueryStatus",
    "TERMINAL_QUERY_STATUSES",
    "OPEN_QUERY_STATUSES",
    "Message",
    "MessageType",
    "SenderType",
    "CallRequest",
    "CallRequestStatus",
    "CallSession",
    "CallMode",
    "CallStatus",
    "ACTIVE_CALL_STATUSES",
]
