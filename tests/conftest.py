import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Add project root (2 levels up from tests/) to sys.path so tests can import 'app'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

# Settings are read at import time; keep the app off Postgres and Redis
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["METRICS_PORT"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from app.api.deps import get_db, get_services
from app.models import Base
from app.models.agent import AgentRole
from app.models.query import QueryStatus
from app.services.connection import ConnectionManager
from app.services.container import build_services
from tests.helpers import (
    FakeRoomProvider,
    RecordingEmail,
    RecordingPush,
    make_agent,
    make_query,
)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "desk.db"


@pytest.fixture
def sync_engine(db_path):
    """Creates the schema and seeds rows without touching the event loop."""
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine, db_path):
    # NullPool: every session opens its own connection on whichever loop is running
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(sync_engine):
    """Insert model instances synchronously; returns them detached but loaded."""
    def _seed(*instances):
        with Session(sync_engine, expire_on_commit=False) as session:
            session.add_all(instances)
            session.commit()
        return instances[0] if len(instances) == 1 else instances
    return _seed


@pytest.fixture
def agents(seed):
    admin, other_admin, super_admin = seed(
        make_agent("Alice Admin", fcm_token="agent-device-token-alice"),
        make_agent("Bob Admin"),
        make_agent("Sam Super", role=AgentRole.SUPER_ADMIN),
    )
    return SimpleNamespace(admin=admin, other_admin=other_admin, super_admin=super_admin)


@pytest.fixture
def open_query(seed):
    return seed(make_query())


@pytest.fixture
def assigned_query(seed, agents):
    return seed(make_query(
        donor_id="donor-2",
        status=QueryStatus.IN_PROGRESS,
        assigned_to_id=agents.admin.id,
    ))


@pytest.fixture
def room_provider():
    return FakeRoomProvider()


@pytest.fixture
def push():
    return RecordingPush()


@pytest.fixture
def email():
    return RecordingEmail()


@pytest.fixture
def connection_manager():
    return ConnectionManager()


@pytest.fixture
def services(session_factory, room_provider, push, email, connection_manager):
    return build_services(
        session_factory,
        room_provider=room_provider,
        email=email,
        push=push,
        connection_manager=connection_manager,
        with_sweeper=False,
    )


@pytest.fixture
def client(services, session_factory):
    from app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
