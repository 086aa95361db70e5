"""
Expiry Sweeper - periodic call session cleanup

Two independent loops:
1. Hard expiry: CREATED/STARTED sessions created longer ago than the room
   lifetime are ended with a CALL_ENDED "expired" message.
2. Overrun notice: STARTED sessions running past the standard duration
   get a one-time SYSTEM message. The call keeps running.

With several workers, each tick first takes a short redis lease so only
one of them sweeps per interval. If redis is unavailable the worker
sweeps anyway; the per-query lock and the state checks keep a double
sweep harmless.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from app.config.constants import SWEEPER_EXPIRY_LEASE_KEY, SWEEPER_OVERRUN_LEASE_KEY
from app.services.call import CallService
from app.services.core.repositories import find_sessions_created_before, find_started_sessions_before
from app.services.exceptions import DeskServiceError

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background expiry and overrun checks for call sessions."""

    def __init__(
        self,
        session_factory,
        call_service: CallService,
        redis: Optional[Redis] = None,
        room_expiry_minutes: int = 120,
        standard_duration_minutes: int = 60,
        expiry_interval_sec: int = 300,
        overrun_interval_sec: int = 60
    ):
        self.session_factory = session_factory
        self.call_service = call_service
        self.redis = redis
        self.room_expiry = timedelta(minutes=room_expiry_minutes)
        self.standard_duration = timedelta(minutes=standard_duration_minutes)
        self.expiry_interval_sec = expiry_interval_sec
        self.overrun_interval_sec = overrun_interval_sec
        self.worker_id = str(uuid.uuid4())
        self._tasks: List[asyncio.Task] = []

    # === Checks ===

    async def run_expiry_check(self, now: Optional[datetime] = None) -> List[str]:
        """End every active session older than the room lifetime. Returns the ended session ids."""
        cutoff = (now or datetime.utcnow()) - self.room_expiry
        expired = []
        async with self.session_factory() as db:
            sessions = await find_sessions_created_before(db, cutoff)
            for session in sessions:
                try:
                    if await self.call_service.expire_session(db, session):
                        expired.append(session.id)
                except (DeskServiceError, SQLAlchemyError) as e:
                    await db.rollback()
                    logger.error(f"[Sweeper] Could not expire session {session.id}: {e}")

        if expired:
            logger.info(f"[Sweeper] Expired {len(expired)} call session(s)")
        return expired

    async def run_overrun_check(self, now: Optional[datetime] = None) -> List[str]:
        """Flag STARTED sessions past the standard duration. Returns the newly flagged session ids."""
        cutoff = (now or datetime.utcnow()) - self.standard_duration
        flagged = []
        async with self.session_factory() as db:
            sessions = await find_started_sessions_before(db, cutoff)
            for session in sessions:
                try:
                    if await self.call_service.flag_overrun(db, session):
                        flagged.append(session.id)
                except (DeskServiceError, SQLAlchemyError) as e:
                    await db.rollback()
                    logger.error(f"[Sweeper] Could not flag overrun on session {session.id}: {e}")

        if flagged:
            logger.info(f"[Sweeper] Flagged {len(flagged)} overrunning call(s)")
        return flagged

    # === Leadership ===

    async def acquire_lease(self, key: str, ttl_sec: int) -> bool:
        """True when this worker should sweep this interval."""
        if self.redis is None:
            return True
        try:
            acquired = await self.redis.set(key, self.worker_id, nx=True, ex=max(ttl_sec, 1))
        except RedisError as e:
            logger.warning(f"[Sweeper] Redis lease unavailable ({e}), sweeping locally")
            return True
        return bool(acquired)

    async def sweep_expired(self) -> List[str]:
        if not await self.acquire_lease(SWEEPER_EXPIRY_LEASE_KEY, self.expiry_interval_sec - 1):
            logger.debug("[Sweeper] Expiry sweep held by another worker")
            return []
        return await self.run_expiry_check()

    async def sweep_overruns(self) -> List[str]:
        if not await self.acquire_lease(SWEEPER_OVERRUN_LEASE_KEY, self.overrun_interval_sec - 1):
            logger.debug("[Sweeper] Overrun sweep held by another worker")
            return []
        return await self.run_overrun_check()

    # === Loops ===

    async def _loop(self, name: str, interval_sec: int, tick: Callable[[], Awaitable[List[str]]]) -> None:
        logger.info(f"[Sweeper] {name} loop started (every {interval_sec}s)")
        while True:
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Sweeper] {name} tick failed: {e}", exc_info=True)

            await asyncio.sleep(interval_sec)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop("expiry", self.expiry_interval_sec, self.sweep_expired)),
            asyncio.create_task(self._loop("overrun", self.overrun_interval_sec, self.sweep_overruns)),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if tasks:
            logger.info("[Sweeper] Stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)
