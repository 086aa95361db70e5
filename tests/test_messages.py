import pytest
from sqlalchemy import update

from app.models.message import MessageType, SenderType
from app.models.query import DonorQuery, QueryStatus
from app.services.exceptions import AgentNotFoundError, ForbiddenError
from app.services.query_status import next_query_status
from tests.helpers import FakeWebSocket, commit_elsewhere


async def test_agent_reply_moves_query_in_progress(db, services, open_query, agents, push):
    message = await services.messages.post_message(
        db, open_query.id, SenderType.ADMIN, agents.admin.id, "Please retake the test tomorrow"
    )

    assert message.message_type == MessageType.CHAT.value
    assert message.sender_id == agents.admin.id
    assert message.is_from_admin
    query = await services.queries.get_query(db, open_query.id)
    assert query.status == QueryStatus.IN_PROGRESS.value

    assert push.sent[-1]["token"] == open_query.fcm_token
    assert push.sent[-1]["title"] == "New reply from Alice Admin"
    assert push.sent[-1]["data"]["messageId"] == message.id


async def test_donor_reply_moves_query_pending(db, services, assigned_query, push):
    await services.messages.post_message(
        db, assigned_query.id, SenderType.DONOR, assigned_query.donor_id, "Thanks, will do"
    )

    query = await services.queries.get_query(db, assigned_query.id)
    assert query.status == QueryStatus.PENDING_REPLY.value
    # Donors are not pushed about their own messages
    assert push.sent == []


async def test_reply_on_resolved_query_keeps_status(db, services, assigned_query, agents):
    await services.queries.resolve_query(db, assigned_query.id, agents.admin.id)

    await services.messages.post_message(db, assigned_query.id, SenderType.DONOR, assigned_query.donor_id, "One more thing")

    query = await services.queries.get_query(db, assigned_query.id)
    assert query.status == QueryStatus.RESOLVED.value


async def test_reply_racing_a_resolve_keeps_query_resolved(
    db, services, assigned_query, sync_engine, session_factory, monkeypatch
):
    def resolved_meanwhile(current, sender_type):
        commit_elsewhere(
            sync_engine,
            update(DonorQuery)
            .where(DonorQuery.id == assigned_query.id)
            .values(status=QueryStatus.RESOLVED.value),
        )
        return next_query_status(current, sender_type)

    monkeypatch.setattr("app.services.message_service.next_query_status", resolved_meanwhile)

    message = await services.messages.post_message(
        db, assigned_query.id, SenderType.DONOR, assigned_query.donor_id, "Any news?"
    )

    # The reply is still kept
    assert message.message_type == MessageType.CHAT.value
    async with session_factory() as fresh:
        query = await fresh.get(DonorQuery, assigned_query.id)
    assert query.status == QueryStatus.RESOLVED.value


async def test_donor_message_from_other_donor_is_forbidden(db, services, open_query):
    with pytest.raises(ForbiddenError):
        await services.messages.post_message(db, open_query.id, SenderType.DONOR, "donor-x", "hi")


async def test_system_messages_cannot_be_posted(db, services, open_query):
    with pytest.raises(ForbiddenError):
        await services.messages.post_message(db, open_query.id, SenderType.SYSTEM, None, "hi")


async def test_agent_message_needs_known_agent(db, services, open_query):
    with pytest.raises(AgentNotFoundError):
        await services.messages.post_message(db, open_query.id, SenderType.ADMIN, "ghost", "hi")


async def test_message_broadcast_reaches_query_room(db, services, open_query, connection_manager):
    donor_app = FakeWebSocket()
    conn = await connection_manager.connect(donor_app)
    await connection_manager.join_query_room(conn.connection_id, open_query.id, open_query.donor_id)

    message = await services.messages.post_message(
        db, open_query.id, SenderType.DONOR, open_query.donor_id, "Is this normal?"
    )

    new_message = donor_app.events("newMessage")
    assert new_message[0]["message_id"] == message.id
    enhanced = donor_app.events("enhancedMessage")
    assert enhanced[0]["content"] == "Is this normal?"
    assert enhanced[0]["is_from_admin"] is False
    assert "admin_token" not in enhanced[0]


async def test_list_messages_filters_and_pages(db, services, open_query, agents):
    await services.messages.post_message(db, open_query.id, SenderType.DONOR, open_query.donor_id, "first")
    await services.messages.post_message(db, open_query.id, SenderType.ADMIN, agents.admin.id, "second")
    await services.queries.accept_query(db, open_query.id, agents.admin.id)

    chat = await services.messages.list_messages(db, open_query.id, message_type=MessageType.CHAT)
    assert [m.content for m in chat] == ["first", "second"]

    page = await services.messages.list_messages(db, open_query.id, limit=1, offset=1)
    assert [m.content for m in page] == ["second"]


async def test_mark_read_only_touches_the_other_party(db, services, open_query, agents):
    await services.messages.post_message(db, open_query.id, SenderType.DONOR, open_query.donor_id, "question")
    await services.messages.post_message(db, open_query.id, SenderType.ADMIN, agents.admin.id, "answer")

    updated = await services.messages.mark_messages_read(db, open_query.id, SenderType.ADMIN)
    assert updated == 1

    db.expire_all()
    messages = await services.messages.list_messages(db, open_query.id)
    read = {m.content: m.is_read for m in messages}
    assert read == {"question": True, "answer": False}

    assert await services.messages.mark_messages_read(db, open_query.id, SenderType.ADMIN) == 0
    assert await services.messages.mark_messages_read(db, open_query.id, SenderType.DONOR) == 1
