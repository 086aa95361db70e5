"""
Application-wide constants for the support desk backend.

This file centralizes the operational values and user-visible texts
used by the query/call lifecycle so they stay consistent across services.

Note: Environment-dependent settings (DB, Redis, API keys, sweep intervals)
belong in settings.py. This file is for values that rarely change.
"""

# ==============================================================================
# DATABASE
# ==============================================================================

# Connection pool size for the async engine
DB_POOL_SIZE: int = 10

# Extra connections allowed above the pool size under load
DB_POOL_MAX_OVERFLOW: int = 20

# ==============================================================================
# PAGINATION
# ==============================================================================

DEFAULT_PAGE_LIMIT: int = 50
MAX_PAGE_LIMIT: int = 200

# ==============================================================================
# VIDEO ROOMS
# ==============================================================================

# Agent + donor
ROOM_MAX_PARTICIPANTS: int = 2

# Join tokens outlive the room by a small margin so a late join still works
MEETING_TOKEN_EXPIRY_MINUTES: int = 120

# Timeout for a single provider HTTP call (seconds)
PROVIDER_HTTP_TIMEOUT_SEC: float = 15.0

# ==============================================================================
# GATEWAY ROOMS
# ==============================================================================

ADMINS_ROOM: str = "admins"
QUERY_ROOM_PREFIX: str = "query-"
USER_ROOM_PREFIX: str = "user-"

# Close code sent to every socket on shutdown (going away)
WS_SHUTDOWN_CLOSE_CODE: int = 1001

# ==============================================================================
# SWEEPER
# ==============================================================================

# Redis lease keys; one worker sweeps per interval
SWEEPER_EXPIRY_LEASE_KEY: str = "desk:sweeper:expiry"
SWEEPER_OVERRUN_LEASE_KEY: str = "desk:sweeper:overrun"

# ==============================================================================
# MESSAGE TEXTS
# ==============================================================================

CALL_ENDED_TEXT: str = "Call ended"
CALL_ENDED_BY_DONOR_TEXT: str = "Call ended by donor"
CALL_EXPIRED_TEXT: str = "Call expired"
CALL_ENDED_QUERY_RESOLVED_TEXT: str = "Call ended (query was resolved)"
CALL_ENDED_QUERY_TRANSFERRED_TEXT: str = "Call ended (query was transferred)"
CALL_ENDED_QUERY_CLOSED_TEXT: str = "Call ended (query was closed)"
AGENT_JOINED_CALL_TEXT: str = "Admin joined the call"

# Matched by substring when de-duplicating the overrun warning
CALL_OVERRUN_MARKER: str = "exceeded the standard meeting duration"
CALL_OVERRUN_TEXT: str = (
    "This call has exceeded the standard meeting duration. You can end it at any time."
)

ACTIVE_QUERY_EXISTS_TEXT: str = (
    "You already have an active query. Please wait until it is resolved before submitting a new one."
)
