"""
Query status derivation.

Who spoke last decides whether an open query waits on the desk or on the
donor. Terminal statuses never move, and system messages never move a
query.
"""
from typing import Optional

from app.models.message import SenderType
from app.models.query import QueryStatus, TERMINAL_QUERY_STATUSES


def next_query_status(current: str, sender_type: str) -> Optional[str]:
    """
    Status a query should take after a message from `sender_type`.

    Returns:
        The new status value, or None when the status must not change
        (terminal query, system message, or already in that status).
    """
    if current in TERMINAL_QUERY_STATUSES:
        return None

    if sender_type == SenderType.ADMIN.value:
        target = QueryStatus.IN_PROGRESS.value
    elif sender_type == SenderType.DONOR.value:
        target = QueryStatus.PENDING_REPLY.value
    else:
        return None

    return None if target == current else target
