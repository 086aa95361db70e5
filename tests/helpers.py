import itertools
from typing import Any, Dict, List, Optional

from app.models.agent import Agent, AgentRole
from app.models.call_session import CallSession, CallStatus
from app.models.query import DonorQuery, QueryStatus
from app.services.auth_service import create_access_token
from app.services.email_service import EmailService
from app.services.exceptions import ExternalServiceError
from app.services.protocols import RoomInfo


class FakeRoomProvider:
    """In-memory room provider; flip the fail_* flags to simulate provider errors."""

    def __init__(self):
        self._counter = itertools.count(1)
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.tokens: List[Dict[str, Any]] = []
        self.fail_create = False
        self.fail_token = False
        self.fail_delete = False

    def room_url(self, room_name: str) -> str:
        return f"https://desk-test.daily.co/{room_name}"

    async def create_room(self, mode: str, expiry_minutes: int) -> RoomInfo:
        if self.fail_create:
            raise ExternalServiceError("Error creating private room: provider returned 500")
        name = f"room-{next(self._counter)}"
        self.created.append(name)
        return RoomInfo(name=name, url=self.room_url(name))

    async def create_token(self, room_name: str, is_owner: bool, mode: str) -> str:
        if self.fail_token:
            raise ExternalServiceError(f"No meeting token returned for room {room_name}")
        self.tokens.append({"room_name": room_name, "is_owner": is_owner, "mode": mode})
        return f"{'owner' if is_owner else 'guest'}-token-{room_name}"

    async def delete_room(self, room_name: str) -> None:
        if self.fail_delete:
            raise ExternalServiceError(f"Error deleting room {room_name}")
        self.deleted.append(room_name)


class RecordingPush:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send_notification(self, token, title, body, data=None) -> Optional[str]:
        self.sent.append({"token": token, "title": title, "body": body, "data": data or {}})
        return f"msg-{len(self.sent)}"


class RecordingEmail(EmailService):
    """Real templates, recorded delivery."""

    def __init__(self):
        super().__init__(api_key="re_test", sender="Desk <desk@example.org>")
        self.sent: List[Dict[str, Any]] = []

    async def send_email(self, to, subject, html) -> bool:
        self.sent.append({"to": list(to), "subject": subject, "html": html})
        return True


class FakeWebSocket:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[int] = None
        self.accepted = False

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.closed_with is not None:
            raise RuntimeError("Cannot send on a closed websocket")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed_with = code

    def events(self, event_type: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == event_type]


def make_agent(name: str, role: AgentRole = AgentRole.ADMIN, **fields) -> Agent:
    slug = name.lower().replace(" ", ".")
    fields.setdefault("email", f"{slug}@example.org")
    return Agent(name=name, role=role.value, **fields)


def make_query(donor_id: str = "donor-1", status: QueryStatus = QueryStatus.PENDING_REPLY, **fields) -> DonorQuery:
    fields.setdefault("donor", "Dana Donor")
    fields.setdefault("test", "Blood panel")
    fields.setdefault("stage", "Screening")
    fields.setdefault("device", "iPhone 15")
    fields.setdefault("fcm_token", "donor-device-token-0001")
    return DonorQuery(donor_id=donor_id, status=status.value, **fields)


def make_session(query_id: str, room_name: str, status: CallStatus = CallStatus.CREATED, **fields) -> CallSession:
    fields.setdefault("mode", "VIDEO")
    return CallSession(query_id=query_id, room_name=room_name, status=status.value, **fields)


def auth_headers(agent: Agent) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(agent.id, agent.role)}"}


def commit_elsewhere(engine, statement) -> None:
    """Commit a write on a separate connection, as a second worker would."""
    with engine.begin() as conn:
        conn.execute(statement)
