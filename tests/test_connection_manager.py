from datetime import timedelta

import pytest

from app.config.constants import WS_SHUTDOWN_CLOSE_CODE
from app.models.agent import AgentRole
from app.services.auth_service import create_access_token
from app.services.connection import ConnectionManager, NotificationGateway, admins_room, query_room, user_room
from tests.helpers import FakeWebSocket


@pytest.fixture
def manager():
    return ConnectionManager()


async def test_agent_token_joins_personal_and_admins_rooms(manager):
    ws = FakeWebSocket()
    conn = await manager.connect(ws, create_access_token("agent-1", AgentRole.ADMIN.value))

    assert conn.is_authenticated
    assert conn.rooms == {user_room("agent-1"), admins_room()}
    assert manager.get_room_members(admins_room()) == [conn.connection_id]


async def test_invalid_or_expired_token_stays_anonymous(manager):
    expired = create_access_token("agent-1", AgentRole.ADMIN.value, expires_delta=timedelta(minutes=-5))

    for token in (None, "not-a-jwt", expired):
        conn = await manager.connect(FakeWebSocket(), token)
        assert not conn.is_authenticated
        assert conn.rooms == set()

    assert manager.get_total_connections() == 3


async def test_non_staff_role_gets_personal_room_only(manager):
    conn = await manager.connect(FakeWebSocket(), create_access_token("viewer-1", "VIEWER"))
    assert conn.rooms == {user_room("viewer-1")}


async def test_join_and_leave_query_room(manager):
    conn = await manager.connect(FakeWebSocket())

    room = await manager.join_query_room(conn.connection_id, "q-1", donor_id="donor-1")
    assert room == query_room("q-1") == "query-q-1"
    assert conn.donor_id == "donor-1"
    assert manager.get_room_members(room) == [conn.connection_id]

    await manager.leave_query_room(conn.connection_id, "q-1")
    assert manager.get_room_members(room) == []
    assert await manager.join_query_room("unknown", "q-1") is None


async def test_broadcast_delivers_once_per_connection(manager):
    agent_ws = FakeWebSocket()
    donor_ws = FakeWebSocket()
    bystander_ws = FakeWebSocket()
    agent = await manager.connect(agent_ws, create_access_token("agent-1", AgentRole.SUPER_ADMIN.value))
    donor = await manager.connect(donor_ws)
    await manager.connect(bystander_ws)
    await manager.join_query_room(agent.connection_id, "q-1")
    await manager.join_query_room(donor.connection_id, "q-1")

    sent = await manager.broadcast(
        "queryResolved", {"query_id": "q-1"}, [query_room("q-1"), admins_room(), user_room("agent-1")]
    )

    assert sent == 2
    assert agent_ws.sent == [{"type": "queryResolved", "query_id": "q-1"}]
    assert donor_ws.sent == [{"type": "queryResolved", "query_id": "q-1"}]
    assert bystander_ws.sent == []


async def test_broadcast_skips_broken_sockets(manager):
    healthy = FakeWebSocket()
    broken = FakeWebSocket()
    for ws in (healthy, broken):
        conn = await manager.connect(ws)
        await manager.join_query_room(conn.connection_id, "q-1")
    broken.closed_with = 1006

    assert await manager.broadcast("messagesRead", {"query_id": "q-1"}, [query_room("q-1")]) == 1
    assert len(healthy.sent) == 1


async def test_disconnect_drops_memberships(manager):
    ws = FakeWebSocket()
    conn = await manager.connect(ws, create_access_token("agent-1", AgentRole.ADMIN.value))
    await manager.join_query_room(conn.connection_id, "q-1")

    await manager.disconnect(conn.connection_id)

    assert manager.get_total_connections() == 0
    assert manager.get_room_members(admins_room()) == []
    assert manager.get_room_members(query_room("q-1")) == []
    assert await manager.broadcast("newQuery", {}, [admins_room()]) == 0


async def test_close_all_uses_going_away_code(manager):
    sockets = [FakeWebSocket() for _ in range(3)]
    for ws in sockets:
        await manager.connect(ws)

    assert await manager.close_all() == 3
    assert [ws.closed_with for ws in sockets] == [WS_SHUTDOWN_CLOSE_CODE] * 3
    assert manager.get_total_connections() == 0


async def test_gateway_events_carry_timestamp_and_targets(manager):
    gateway = NotificationGateway(manager)
    staff = FakeWebSocket()
    donor = FakeWebSocket()
    await manager.connect(staff, create_access_token("agent-1", AgentRole.ADMIN.value))
    donor_conn = await manager.connect(donor)
    await manager.join_query_room(donor_conn.connection_id, "q-1")

    await gateway.query_transfer("q-1", "Bob Admin", "agent-2", "agent-1")
    await gateway.status_changed("q-1", "PENDING_REPLY", "IN_PROGRESS", "agent-1")

    # queryTransfer is for the dashboard only
    assert [f["type"] for f in donor.sent] == ["queryStatusChange", "ticketStatusChanged"]
    assert [f["type"] for f in staff.sent] == ["queryTransfer", "queryStatusChange", "ticketStatusChanged"]
    assert all("timestamp" in f for f in staff.sent)
