from typing import Optional, AsyncGenerator
from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.models.database import AsyncSessionLocal
from app.models.agent import Agent, STAFF_ROLES
from app.services.auth_service import decode_token
from app.services.container import DeskServices
from app.services.exceptions import (
    ActiveCallExistsError,
    ConflictError,
    DeskServiceError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    """
    async with AsyncSessionLocal() as db:
        yield db


def get_services(connection: HTTPConnection) -> DeskServices:
    """Services built at startup (works for HTTP and WebSocket routes)."""
    return connection.app.state.services


async def get_current_agent(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> Agent:
    """
    Resolve the bearer token to an active staff agent.
    Raises 401 when the token is missing, invalid or names no active agent.
    """
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    agent = await db.get(Agent, payload["sub"])
    if not agent or not agent.is_active or agent.role not in STAFF_ROLES:
        logger.warning(f"[Auth] Token for unknown or inactive agent {payload['sub']}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Agent not found")

    return agent


def to_http_exception(e: DeskServiceError) -> HTTPException:
    """Map a lifecycle error to its HTTP status."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ForbiddenError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, ActiveCallExistsError):
        # The client offers "join existing call" from these fields
        return HTTPException(status_code=409, detail={
            "message": str(e),
            "active_session_id": e.active_session_id,
            "room_name": e.room_name,
        })
    if isinstance(e, (ConflictError, InvalidStateError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ExternalServiceError):
        return HTTPException(status_code=502, detail=str(e))
    logger.error(f"Unmapped service error: {e!r}")
    return HTTPException(status_code=500, detail=str(e))
