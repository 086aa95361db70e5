import asyncio

import pytest
from sqlalchemy import select, update

from app.config.constants import ACTIVE_QUERY_EXISTS_TEXT, CALL_ENDED_QUERY_RESOLVED_TEXT
from app.models.call_request import CallRequest
from app.models.call_session import CallMode, CallSession, CallStatus
from app.models.message import Message, MessageType, SenderType
from app.models.query import DonorQuery, QueryStatus
from app.services.auth_service import create_access_token
from app.services.call.validators import ensure_query_open
from app.services.exceptions import (
    ActiveQueryExistsError,
    ForbiddenError,
    InvalidStateError,
    QueryNotFoundError,
)
from tests.helpers import FakeWebSocket, commit_elsewhere


async def connect_agent(manager, agent):
    ws = FakeWebSocket()
    await manager.connect(ws, create_access_token(agent.id, agent.role))
    return ws


async def messages_of(db, query_id):
    result = await db.execute(select(Message).where(Message.query_id == query_id))
    return list(result.scalars().all())


# === Submission ===

async def test_submit_query_records_message_and_notifies_desk(db, services, agents, email, connection_manager):
    dashboard = await connect_agent(connection_manager, agents.admin)

    query = await services.queries.submit_query(
        db, donor="Dana Donor", donor_id="donor-9", test="Blood panel",
        stage="Screening", device="Pixel 8", content="My results look odd",
    )

    assert query.status == QueryStatus.PENDING_REPLY.value
    messages = await messages_of(db, query.id)
    assert [m.message_type for m in messages] == [MessageType.QUERY.value]
    assert messages[0].sender_type == SenderType.DONOR.value
    assert messages[0].sender_id == "donor-9"

    new_query = dashboard.events("newQuery")
    assert len(new_query) == 1
    assert new_query[0]["query_id"] == query.id
    assert "timestamp" in new_query[0]

    assert len(email.sent) == 1
    assert set(email.sent[0]["to"]) == {a.email for a in (agents.admin, agents.other_admin, agents.super_admin)}
    assert email.sent[0]["subject"] == f"New Query #{query.id}: Blood panel from Dana Donor"


async def test_donor_cannot_open_second_query_while_one_is_open(db, services, open_query):
    with pytest.raises(ActiveQueryExistsError) as exc:
        await services.queries.submit_query(
            db, donor="Dana Donor", donor_id=open_query.donor_id,
            test="Blood panel", stage="Screening", device="iPhone 15",
        )
    assert str(exc.value) == ACTIVE_QUERY_EXISTS_TEXT


async def test_donor_can_submit_again_after_resolution(db, services, open_query, agents):
    await services.queries.resolve_query(db, open_query.id, agents.super_admin.id)

    query = await services.queries.submit_query(
        db, donor="Dana Donor", donor_id=open_query.donor_id,
        test="Urine test", stage="Follow-up", device="iPhone 15",
    )
    assert query.id != open_query.id
    # No content, no QUERY message
    assert await messages_of(db, query.id) == []


async def test_concurrent_submissions_open_one_query(services, session_factory, agents):
    async def submit():
        async with session_factory() as session:
            return await services.queries.submit_query(
                session, donor="Dana Donor", donor_id="donor-9",
                test="Blood panel", stage="Screening", device="Pixel 8",
            )

    results = await asyncio.gather(submit(), submit(), return_exceptions=True)

    lost = [r for r in results if isinstance(r, ActiveQueryExistsError)]
    assert len(lost) == 1
    assert str(lost[0]) == ACTIVE_QUERY_EXISTS_TEXT
    async with session_factory() as fresh:
        result = await fresh.execute(select(DonorQuery).where(DonorQuery.donor_id == "donor-9"))
        queries = list(result.scalars().all())
    assert len(queries) == 1
    assert queries[0].status == QueryStatus.PENDING_REPLY.value


# === Accept ===

async def test_accept_query_assigns_and_moves_in_progress(db, services, open_query, agents, connection_manager):
    dashboard = await connect_agent(connection_manager, agents.admin)

    query = await services.queries.accept_query(db, open_query.id, agents.admin.id)

    assert query.status == QueryStatus.IN_PROGRESS.value
    assert query.assigned_to_id == agents.admin.id
    messages = await messages_of(db, query.id)
    assert [m.content for m in messages] == ["Query accepted by Alice Admin"]
    assert messages[0].sender_type == SenderType.SYSTEM.value
    assert messages[0].sender_id is None

    assigned = dashboard.events("queryAssigned")
    assert assigned[0]["query_id"] == query.id
    assert assigned[0]["reminder"] is False
    changed = dashboard.events("ticketStatusChanged")
    assert changed[0]["old_status"] == QueryStatus.PENDING_REPLY.value
    assert changed[0]["new_status"] == QueryStatus.IN_PROGRESS.value
    assert dashboard.events("queryStatusChange")[0]["status"] == QueryStatus.IN_PROGRESS.value


async def test_accept_query_by_another_agent_reassigns(db, services, assigned_query, agents):
    query = await services.queries.accept_query(db, assigned_query.id, agents.other_admin.id)
    assert query.assigned_to_id == agents.other_admin.id
    assert query.status == QueryStatus.IN_PROGRESS.value


async def test_accept_unknown_query_raises_not_found(db, services, agents):
    with pytest.raises(QueryNotFoundError):
        await services.queries.accept_query(db, "missing", agents.admin.id)


async def test_accept_terminal_query_is_rejected(db, services, assigned_query, agents):
    await services.queries.resolve_query(db, assigned_query.id, agents.admin.id)
    with pytest.raises(InvalidStateError):
        await services.queries.accept_query(db, assigned_query.id, agents.other_admin.id)


async def test_accept_racing_a_resolve_keeps_query_resolved(
    db, services, open_query, agents, sync_engine, session_factory, monkeypatch
):
    def resolved_meanwhile(query):
        ensure_query_open(query)
        commit_elsewhere(
            sync_engine,
            update(DonorQuery)
            .where(DonorQuery.id == open_query.id)
            .values(status=QueryStatus.RESOLVED.value),
        )

    monkeypatch.setattr("app.services.query_service.ensure_query_open", resolved_meanwhile)

    with pytest.raises(InvalidStateError):
        await services.queries.accept_query(db, open_query.id, agents.admin.id)

    async with session_factory() as fresh:
        query = await fresh.get(DonorQuery, open_query.id)
        messages = await messages_of(fresh, open_query.id)
    assert query.status == QueryStatus.RESOLVED.value
    assert query.assigned_to_id is None
    assert messages == []
    assert len(services.locks) == 0


# === Resolve ===

async def test_resolve_requires_assignment_or_elevated_role(db, services, assigned_query, agents):
    with pytest.raises(ForbiddenError):
        await services.queries.resolve_query(db, assigned_query.id, agents.other_admin.id)

    query = await services.queries.resolve_query(db, assigned_query.id, agents.super_admin.id)
    assert query.status == QueryStatus.RESOLVED.value
    assert query.resolved_by_id == agents.super_admin.id


async def test_resolve_records_message_and_notifies(db, services, assigned_query, agents, push, connection_manager):
    dashboard = await connect_agent(connection_manager, agents.other_admin)

    await services.queries.resolve_query(db, assigned_query.id, agents.admin.id)

    messages = await messages_of(db, assigned_query.id)
    assert "Query resolved by Alice Admin" in [m.content for m in messages]
    resolved = dashboard.events("queryResolved")
    assert resolved[0]["resolved_by"] == agents.admin.id
    assert push.sent[-1]["token"] == assigned_query.fcm_token
    assert push.sent[-1]["data"]["type"] == "query_resolved"


async def test_resolve_twice_is_invalid_state(db, services, assigned_query, agents):
    await services.queries.resolve_query(db, assigned_query.id, agents.admin.id)
    with pytest.raises(InvalidStateError):
        await services.queries.resolve_query(db, assigned_query.id, agents.admin.id)


async def test_resolve_ends_active_call(db, services, assigned_query, agents, room_provider, connection_manager):
    dashboard = await connect_agent(connection_manager, agents.admin)
    session, _ = await services.calls.start_call(db, assigned_query.id, agents.admin.id, CallMode.VIDEO)

    await services.queries.resolve_query(db, assigned_query.id, agents.admin.id)

    await db.refresh(session)
    assert session.status == CallStatus.ENDED.value
    assert session.ended_at is not None
    assert room_provider.deleted == [session.room_name]

    ended = [m for m in await messages_of(db, assigned_query.id) if m.message_type == MessageType.CALL_ENDED.value]
    assert len(ended) == 1
    assert ended[0].content == CALL_ENDED_QUERY_RESOLVED_TEXT
    assert ended[0].call_session_id == session.id

    call_ended = dashboard.events("activeCallEnded")
    assert call_ended[0]["reason"] == "query_resolved"
    assert call_ended[0]["ended_by"] == agents.admin.id


# === Transfer ===

async def test_transfer_closes_query_for_the_transferring_agent(
    db, services, assigned_query, agents, email, connection_manager
):
    target_socket = await connect_agent(connection_manager, agents.other_admin)

    query = await services.queries.transfer_query(
        db, assigned_query.id, agents.admin.id, agents.other_admin.id, note="Needs a lab specialist"
    )

    assert query.status == QueryStatus.TRANSFERRED.value
    assert query.transferred_to_id == agents.other_admin.id
    assert query.transferred_to == "Bob Admin"
    assert query.transfer_note == "Needs a lab specialist"

    contents = [m.content for m in await messages_of(db, query.id)]
    assert "Query transferred to Bob Admin by Alice Admin\n\nNote: Needs a lab specialist" in contents

    transferred = target_socket.events("ticketTransferred")
    # Target sits in both its own room and admins: delivered once
    assert len(transferred) == 1
    assert transferred[0]["from_agent_id"] == agents.admin.id
    assert transferred[0]["to_agent_id"] == agents.other_admin.id
    assert target_socket.events("queryAssigned")[0]["assigned_by"] == agents.admin.id
    assert email.sent[-1]["to"] == [agents.other_admin.email]

    with pytest.raises(InvalidStateError):
        await services.queries.transfer_query(db, query.id, agents.admin.id, agents.super_admin.id)


async def test_reminder_only_for_transferred_queries(db, services, assigned_query, agents, email, connection_manager):
    with pytest.raises(InvalidStateError):
        await services.queries.send_reminder(db, assigned_query.id, agents.admin.id)

    await services.queries.transfer_query(db, assigned_query.id, agents.admin.id, agents.other_admin.id)
    target_socket = await connect_agent(connection_manager, agents.other_admin)

    await services.queries.send_reminder(db, assigned_query.id, agents.admin.id)

    reminder = target_socket.events("queryAssigned")
    assert reminder[0]["reminder"] is True
    assert email.sent[-1]["to"] == [agents.other_admin.email]


# === Donor close ===

async def test_donor_close_checks_ownership(db, services, open_query):
    with pytest.raises(ForbiddenError):
        await services.queries.donor_close_query(db, open_query.id, "someone-else")

    query = await services.queries.donor_close_query(db, open_query.id, open_query.donor_id)
    assert query.status == QueryStatus.RESOLVED.value
    assert query.resolved_by_id is None
    assert "Query closed by donor" in [m.content for m in await messages_of(db, query.id)]


# === Delete ===

async def test_delete_query_requires_elevated_role(db, services, assigned_query, agents):
    with pytest.raises(ForbiddenError):
        await services.queries.delete_query(db, assigned_query.id, agents.admin.id)


async def test_delete_query_removes_everything(db, services, assigned_query, agents, room_provider):
    await services.calls.request_call(db, assigned_query.id, CallMode.AUDIO)
    session, _ = await services.calls.start_call(db, assigned_query.id, agents.admin.id, CallMode.VIDEO)

    await services.queries.delete_query(db, assigned_query.id, agents.super_admin.id)

    assert room_provider.deleted == [session.room_name]
    for model in (Message, CallSession, CallRequest):
        result = await db.execute(select(model).where(model.query_id == assigned_query.id))
        assert result.scalars().all() == []
    assert await db.get(DonorQuery, assigned_query.id) is None
