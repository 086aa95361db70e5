"""Shared asyncio Redis client (used for the sweeper lease)."""
import logging
from typing import Optional

import redis.asyncio as redis

from app.config.settings import settings

logger = logging.getLogger(__name__)

_redis: Optional[redis.Redis] = None


def build_redis_url() -> str:
    auth = f":{settings.REDIS_PASSWORD}@" if settings.REDIS_PASSWORD else ""
    return f"redis://{auth}{settings.REDIS_HOST}:{settings.REDIS_PORT}/0"


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(build_redis_url(), decode_responses=True)
        logger.info(f"Redis client configured for {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    return _redis


async def close_redis():
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
