"""
Auth Service - Bearer credential issuing and verification

Agents authenticate with an HS256 JWT whose `sub` is the agent id and
whose `role` claim carries the agent role. Login itself lives outside
this service; tokens are issued by the staff directory (and by tests).
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from jose import jwt, JWTError

from app.config.settings import settings

logger = logging.getLogger(__name__)


def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.JWT_EXP_DAYS)
    expire = datetime.utcnow() + expires_delta
    to_encode = {"sub": subject, "role": role, "exp": expire}
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> Optional[dict]:
    """Return the claims of a valid token, or None."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"[Auth] Rejected token: {e}")
        return None
    if not payload.get("sub"):
        return None
    return payload
