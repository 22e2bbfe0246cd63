from __future__ import annotations

import itertools
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from taskboard.api import create_app  # noqa: E402
from taskboard.config import Settings  # noqa: E402
from taskboard.database import Database  # noqa: E402
from taskboard.models import Role, User  # noqa: E402
from taskboard.realtime import Broadcaster, Event, user_channel  # noqa: E402
from taskboard.security import TokenAuth  # noqa: E402

PASSWORD = "CorrectHorse9!"
JWT_SECRET = "tests-signing-secret"

_recorder_ids = itertools.count(1)


class RecordingSubscriber:
    """Stand-in connection that keeps every delivered event in memory."""

    def __init__(self, user_id: int, username: str = "observer", role: str = "Member") -> None:
        self.id = f"recorder-{next(_recorder_ids)}"
        self.user_id = user_id
        self.username = username
        self.role = role
        self.events: List[Event] = []

    def deliver(self, event: Event) -> None:
        self.events.append(event)

    def named(self, name: str) -> List[Event]:
        return [event for event in self.events if event.name == name]


@dataclass
class Accounts:
    auth: TokenAuth
    users: Dict[str, User] = field(default_factory=dict)

    def __getitem__(self, name: str) -> User:
        return self.users[name]

    def token(self, name: str) -> str:
        return self.auth.issue(self.users[name])

    def headers(self, name: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token(name)}"}


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "taskboard.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(jwt_secret=JWT_SECRET, database_path=tmp_path / "taskboard.sqlite3")


@pytest.fixture()
def auth() -> TokenAuth:
    return TokenAuth(JWT_SECRET)


@pytest.fixture()
def broadcaster() -> Broadcaster:
    return Broadcaster()


@pytest.fixture()
def app(settings: Settings, database: Database, broadcaster: Broadcaster, auth: TokenAuth):
    return create_app(settings=settings, database=database, broadcaster=broadcaster, auth=auth)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def accounts(database: Database, auth: TokenAuth) -> Accounts:
    registry = Accounts(auth=auth)
    registry.users["admin"] = database.create_user("Alice Admin", "admin@example.com", PASSWORD, Role.ADMIN)
    registry.users["manager"] = database.create_user("Mark Manager", "manager@example.com", PASSWORD, Role.MANAGER)
    registry.users["member"] = database.create_user("Mia Member", "member@example.com", PASSWORD, Role.MEMBER)
    registry.users["other"] = database.create_user("Otto Other", "other@example.com", PASSWORD, Role.MEMBER)
    return registry


@pytest.fixture()
def listen(broadcaster: Broadcaster):
    """Connect a recording subscriber joined to the given channels."""

    def _listen(user_id: int, *channels: str) -> RecordingSubscriber:
        subscriber = RecordingSubscriber(user_id)
        broadcaster.connect(subscriber)
        for channel in channels or (user_channel(user_id),):
            broadcaster.join(subscriber, channel)
        return subscriber

    return _listen
