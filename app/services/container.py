"""
Service wiring.

Builds the lifecycle services once per process with their collaborators
and one shared ConnectionManager. The application stores the result on
app.state; tests build their own with fakes.
"""
from dataclasses import dataclass, field
from typing import Optional
import logging

from redis.asyncio import Redis

from app.config.settings import settings
from app.services.call import CallService
from app.services.connection import ConnectionManager, NotificationGateway
from app.services.core import QueryLockRegistry
from app.services.email_service import EmailService
from app.services.expiry_sweeper import ExpirySweeper
from app.services.message_service import MessageService
from app.services.protocols import PushSenderProtocol, RoomProviderProtocol
from app.services.push_service import PushService
from app.services.query_service import QueryService
from app.services.room_provider import DailyRoomProvider

logger = logging.getLogger(__name__)


@dataclass
class DeskServices:
    session_factory: object
    connection_manager: ConnectionManager
    gateway: NotificationGateway
    room_provider: RoomProviderProtocol
    email: EmailService
    push: PushSenderProtocol
    locks: QueryLockRegistry
    messages: MessageService
    calls: CallService
    queries: QueryService
    sweeper: Optional[ExpirySweeper] = field(default=None)

    async def aclose(self) -> None:
        """Shutdown hook: stop background work, close sockets and HTTP clients."""
        if self.sweeper:
            await self.sweeper.stop()
        await self.connection_manager.close_all()
        for client in (self.room_provider, self.email, self.push):
            close = getattr(client, "close", None)
            if close:
                await close()


def build_services(
    session_factory,
    room_provider: Optional[RoomProviderProtocol] = None,
    email: Optional[EmailService] = None,
    push: Optional[PushSenderProtocol] = None,
    connection_manager: Optional[ConnectionManager] = None,
    redis: Optional[Redis] = None,
    with_sweeper: bool = True
) -> DeskServices:
    """Wire the services. Missing collaborators are built from settings."""
    if room_provider is None:
        room_provider = DailyRoomProvider(
            api_key=settings.DAILY_API_KEY,
            domain=settings.DAILY_DOMAIN,
            api_url=settings.DAILY_API_URL,
        )
    if email is None:
        email = EmailService(
            api_key=settings.EMAIL_API_KEY,
            sender=settings.EMAIL_FROM,
            api_url=settings.EMAIL_API_URL,
            dashboard_url=settings.DASHBOARD_URL,
        )
    if push is None:
        push = PushService(server_key=settings.FCM_SERVER_KEY, api_url=settings.FCM_API_URL)
    if connection_manager is None:
        connection_manager = ConnectionManager()

    gateway = NotificationGateway(connection_manager)
    locks = QueryLockRegistry()
    messages = MessageService(gateway, push, locks)
    calls = CallService(
        room_provider=room_provider,
        gateway=gateway,
        messages=messages,
        push=push,
        email=email,
        locks=locks,
        room_expiry_minutes=settings.ROOM_EXPIRY_MINUTES,
    )
    queries = QueryService(calls, messages, gateway, push, email, locks)

    sweeper = None
    if with_sweeper:
        sweeper = ExpirySweeper(
            session_factory,
            calls,
            redis=redis,
            room_expiry_minutes=settings.ROOM_EXPIRY_MINUTES,
            standard_duration_minutes=settings.STANDARD_CALL_DURATION_MINUTES,
            expiry_interval_sec=settings.EXPIRY_SWEEP_INTERVAL_SEC,
            overrun_interval_sec=settings.OVERRUN_SWEEP_INTERVAL_SEC,
        )

    logger.info("Desk services wired")
    return DeskServices(
        session_factory=session_factory,
        connection_manager=connection_manager,
        gateway=gateway,
        room_provider=room_provider,
        email=email,
        push=push,
        locks=locks,
        messages=messages,
        calls=calls,
        queries=queries,
        sweeper=sweeper,
    )
