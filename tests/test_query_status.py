import pytest

from app.models.message import SenderType
from app.models.query import QueryStatus
from app.services.query_status import next_query_status


@pytest.mark.parametrize("current,sender,expected", [
    (QueryStatus.PENDING_REPLY, SenderType.ADMIN, QueryStatus.IN_PROGRESS.value),
    (QueryStatus.IN_PROGRESS, SenderType.DONOR, QueryStatus.PENDING_REPLY.value),
    (QueryStatus.IN_PROGRESS, SenderType.ADMIN, None),
    (QueryStatus.PENDING_REPLY, SenderType.DONOR, None),
    (QueryStatus.IN_PROGRESS, SenderType.SYSTEM, None),
])
def test_open_query_follows_last_speaker(current, sender, expected):
    assert next_query_status(current.value, sender.value) == expected


@pytest.mark.parametrize("terminal", [QueryStatus.RESOLVED, QueryStatus.TRANSFERRED])
@pytest.mark.parametrize("sender", [SenderType.ADMIN, SenderType.DONOR, SenderType.SYSTEM])
def test_terminal_status_never_moves(terminal, sender):
    assert next_query_status(terminal.value, sender.value) is None


def test_unknown_sender_is_ignored():
    assert next_query_status(QueryStatus.PENDING_REPLY.value, "BOT") is None
