"""
Desk Service Exceptions

Typed failures raised by the lifecycle services. Routers map each family
to an HTTP status; the message is meant to be shown to the caller.
"""


class DeskServiceError(Exception):
    """Base exception for lifecycle errors"""
    pass


# === NotFound ===

class NotFoundError(DeskServiceError):
    """Referenced entity does not exist"""
    pass


class QueryNotFoundError(NotFoundError):
    pass


class AgentNotFoundError(NotFoundError):
    pass


class CallRequestNotFoundError(NotFoundError):
    pass


class CallSessionNotFoundError(NotFoundError):
    pass


# === Forbidden ===

class ForbiddenError(DeskServiceError):
    """Actor lacks authority over the query"""
    pass


# === Conflict ===

class ConflictError(DeskServiceError):
    pass


class ActiveQueryExistsError(ConflictError):
    """Donor already has an open query"""
    pass


class ActiveCallExistsError(ConflictError):
    """Query already has a CREATED or STARTED call session"""

    def __init__(self, message: str, active_session_id: str = None, room_name: str = None):
        super().__init__(message)
        self.active_session_id = active_session_id
        self.room_name = room_name


class CallRequestAlreadyResolvedError(ConflictError):
    """Call request was already accepted or rejected"""
    pass


# === InvalidState ===

class InvalidStateError(DeskServiceError):
    """Action attempted against a terminal or incompatible status"""
    pass


# === External ===

class ExternalServiceError(DeskServiceError):
    """Room/token provider unreachable or returned an error"""
    pass
