"""Shared test fixtures and configuration for backend tests."""
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from taskhub.auth import create_access_token
from taskhub.config import AppSettings, reset_config, set_config
from taskhub.db import Database
from taskhub.main import app
from taskhub.services import Services, reset_services, set_services
from taskhub.users import UserRecord


class FakeWebSocket:
    """Stands in for a Starlette WebSocket inside the ConnectionManager."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail
        self.accepted = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for e in self.sent if event_type is None or e["type"] == event_type]


@pytest.fixture(autouse=True)
def services() -> Services:
    """Fresh in-memory database and service container for every test."""
    set_config(AppSettings())
    container = reset_services(":memory:")
    yield container
    set_services(None)
    Database.reset_instance()
    reset_config()


@pytest.fixture
def users(services):
    directory = services.users
    people = {
        "alice": UserRecord(id="alice", name="Alice", email="alice@example.com"),
        "bob": UserRecord(id="bob", name="Bob", email="bob@example.com"),
        "carol": UserRecord(id="carol", name="Carol", email="carol@example.com", role="manager"),
        "dave": UserRecord(id="dave", name="Dave", email="dave@example.com"),
        "root": UserRecord(id="root", name="Root", email="root@example.com", role="admin"),
    }
    for user in people.values():
        directory.add(user)
    return people


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


def auth(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def connect_as(services: Services, user_id: str, fail: bool = False) -> FakeWebSocket:
    """Open a fake connection and join the user's personal room."""
    ws = FakeWebSocket(fail=fail)
    connection = await services.manager.connect(ws)
    services.manager.join_personal_room(connection.id, user_id)
    return ws
