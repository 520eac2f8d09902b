"""
Pytest configuration and shared fixtures.
"""

import pytest
from pathlib import Path
from typing import Any, Dict, List

from venuedesk.access import Actor
from venuedesk.database import init_database
from venuedesk.errors import PersistenceError
from venuedesk.moderation import ModerationService
from venuedesk.saga import CreationSaga
from venuedesk.store import RelationStore


class RecordingNotifier:
    """Notifier double that remembers every event."""

    def __init__(self):
        self.sent: List[tuple] = []

    def send(self, event, recipient, payload):
        self.sent.append((event, recipient, payload))

    def events(self) -> List[str]:
        return [event for event, _, _ in self.sent]


class RecordingPoints:
    def __init__(self):
        self.awards: List[tuple] = []

    def award(self, user_id, points, reason, item_type, item_id):
        self.awards.append((user_id, points, item_type, item_id))


class BrokenCollaborator:
    def send(self, *args, **kwargs):
        raise RuntimeError("notification service down")

    def award(self, *args, **kwargs):
        raise RuntimeError("points service down")


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "venuedesk.db"
    init_database(path)
    return path


@pytest.fixture
def store(db_path) -> RelationStore:
    return RelationStore(db_path, max_retries=0, retry_delay=0)


def _actor(store, pseudonym: str, role: str) -> Actor:
    user = store.insert_user({"pseudonym": pseudonym, "role": role})
    return Actor(id=user["id"], role=user["role"])


@pytest.fixture
def admin(store) -> Actor:
    return _actor(store, "root", "admin")


@pytest.fixture
def moderator(store) -> Actor:
    return _actor(store, "mod", "moderator")


@pytest.fixture
def member(store) -> Actor:
    """Ordinary community user."""
    return _actor(store, "member", "user")


@pytest.fixture
def other_member(store) -> Actor:
    return _actor(store, "stranger", "user")


@pytest.fixture
def owner(store) -> Actor:
    return _actor(store, "owner", "owner")


def _venue(store, creator: Actor, name: str, category: str) -> Dict[str, Any]:
    return store.insert_venue({
        "name": name,
        "address": "1 Walking Street",
        "zone": "Soi 6",
        "category": category,
        "status": "approved",
        "created_by": creator.id,
    })


@pytest.fixture
def nightclub(store, admin) -> Dict[str, Any]:
    return _venue(store, admin, "Club A", "Nightclub")


@pytest.fixture
def nightclub_b(store, admin) -> Dict[str, Any]:
    return _venue(store, admin, "Club B", "Nightclub")


@pytest.fixture
def bar(store, admin) -> Dict[str, Any]:
    return _venue(store, admin, "Bar B", "Bar")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def points() -> RecordingPoints:
    return RecordingPoints()


@pytest.fixture
def service(store, notifier, points) -> ModerationService:
    return ModerationService(store, notifier, points)


@pytest.fixture
def saga(store, notifier, points) -> CreationSaga:
    return CreationSaga(store, notifier, points)


@pytest.fixture
def make_worker(store):
    """Insert a worker row directly, bypassing the saga."""
    def _make(creator: Actor, **fields) -> Dict[str, Any]:
        data = {"name": "Ann", "sex": "female", "status": "approved", "created_by": creator.id}
        data.update(fields)
        return store.insert_worker(data)
    return _make


@pytest.fixture
def fail_on(monkeypatch):
    """Make one store method raise PersistenceError."""
    def _fail(target, method: str, message: str = "Store operation failed"):
        def broken(*args, **kwargs):
            raise PersistenceError(message)
        monkeypatch.setattr(target, method, broken)
    return _fail


@pytest.fixture
def broken_collaborator() -> BrokenCollaborator:
    return BrokenCollaborator()
