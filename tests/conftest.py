"""Pytest configuration and fixtures for testing."""

import os
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from trackme.main import app
from trackme.models.parking import ParkingCreate
from trackme.models.user import Role
from trackme.services import database, parking, users


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables before any settings are loaded."""
    # Session tokens
    os.environ["JWT_SECRET"] = "test-secret-key-with-at-least-32-bytes!"
    os.environ["JWT_BCRYPT_ROUNDS"] = "4"

    # MongoDB Configuration
    os.environ["MONGO_URI"] = "mongodb://localhost:27017"
    os.environ["MONGO_DB_NAME"] = "trackme_test"

    # Application Configuration
    os.environ["LOG_LEVEL"] = "INFO"

    yield


@pytest.fixture(autouse=True)
def mongo_client():
    """Give every test its own in-memory MongoDB."""
    client = mongomock.MongoClient(tz_aware=True)
    database.set_client(client)
    database.ensure_indexes()

    yield client

    database.set_client(None)


@pytest.fixture
def test_client():
    """Create a test client for the FastAPI application with lifespan run."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def api_user():
    """API-only user and the plaintext key issued with it."""
    user, _, plaintext = users.create_user_with_api_key("driver@example.com")
    return user, plaintext


@pytest.fixture
def other_api_user():
    user, _, plaintext = users.create_user_with_api_key("other@example.com")
    return user, plaintext


@pytest.fixture
def admin_token():
    """Session token of an administrator."""
    admin = users.register_user("admin@example.com", "Admin123")
    users.set_role(str(admin.id), Role.ADMIN)
    return users.create_access_token(admin)


@pytest.fixture
def make_parking():
    """Factory saving a parking position for a user id."""

    def _make(user_id: int, address: str | None = "1 Main Street", note=None):
        body = ParkingCreate(
            latitude=48.8566, longitude=2.3522, address=address, note=note
        )
        return parking.create_parking(user_id, body)

    return _make


class VirtualHandle:
    def __init__(self, due: datetime, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Scheduler driven by a virtual clock instead of wall time."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.handles: list[VirtualHandle] = []

    def clock(self) -> datetime:
        return self.now

    def schedule(self, delay: float, callback) -> VirtualHandle:
        handle = VirtualHandle(self.now + timedelta(seconds=delay), callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[VirtualHandle]:
        return [h for h in self.handles if not h.cancelled]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running every callback that falls due."""
        target = self.now + timedelta(seconds=seconds)
        while True:
            due = sorted(
                (h for h in self.pending if h.due <= target), key=lambda h: h.due
            )
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            self.now = handle.due
            await handle.callback()
        self.now = target


class RecordingConnections:
    """Stands in for the connection manager and records broadcasts."""

    def __init__(self):
        self.broadcasts: list[tuple[int, object]] = []
        self.offline: set[int] = set()

    async def emit_to_owner(self, owner_id: int, event) -> int:
        if owner_id in self.offline:
            return 0
        self.broadcasts.append((owner_id, event))
        return 1

    def events(self, name: str) -> list:
        return [event for _, event in self.broadcasts if event.event == name]


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def connections():
    return RecordingConnections()
