import itertools
import os

# Must be set before any ``rendezvous`` import: settings validation, the
# default engine and the auth strategy are all chosen at import time.
os.environ.setdefault("TESTING", "1")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import rendezvous.database as _db_mod  # noqa: E402
from rendezvous.crud import crud  # noqa: E402
from rendezvous.database import Base  # noqa: E402
from rendezvous.database import get_db  # noqa: E402
from rendezvous.database import make_engine  # noqa: E402
from rendezvous.database import make_sessionmaker  # noqa: E402
from rendezvous.events import EventType  # noqa: E402
from rendezvous.events import event_bus  # noqa: E402

# Create a test database - using in-memory SQLite for tests
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

# Create test engine and session factory
test_engine = make_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool for in-memory database
)

TestingSessionLocal = make_sessionmaker(test_engine)

# Override default_session_factory so WebSocket handlers use test sessions
_db_mod.default_session_factory = TestingSessionLocal

# Import app after engine setup is in place
from rendezvous.dependencies.auth import get_current_user  # noqa: E402
from rendezvous.main import app  # noqa: E402


@pytest.fixture
def db_session():
    """
    Creates a fresh database for each test, then tears it down after the test is done.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db_session):
    """
    Create a FastAPI TestClient with the test database dependency.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = TestClient(app, backend="asyncio")
    yield client

    app.dependency_overrides = {}


@pytest.fixture
def act_as(client):
    """Switch the authenticated user for subsequent requests: ``act_as(user)``."""

    def _act_as(user):
        app.dependency_overrides[get_current_user] = lambda: user
        return client

    return _act_as


@pytest.fixture
def make_user(db_session):
    """Factory creating users with predictable names (``user1``, ``user2`` …)."""

    counter = itertools.count(1)

    def _make_user(name: str | None = None):
        n = next(counter)
        name = name or f"user{n}"
        return crud.create_user(
            db_session,
            email=f"{name}@example.com",
            username=name,
            display_name=name.capitalize(),
        )

    return _make_user


@pytest.fixture
def captured_events():
    """Record every change event published on the process bus during a test."""

    events = []

    async def _record(data):
        events.append(data)

    for event_type in EventType:
        event_bus.subscribe(event_type, _record)
    try:
        yield events
    finally:
        for event_type in EventType:
            event_bus.unsubscribe(event_type, _record)
