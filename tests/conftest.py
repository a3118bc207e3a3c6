"""
Pytest configuration for the Maintenance Tracker API tests.

Provides:
1. An in-memory MongoDB (mongomock) per test
2. The FastAPI app built around that database, and a TestClient
3. An ``api`` helper for the register/login/create/assign flows most tests need
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from stores import SessionStore, TaskStore, UserStore

PASSWORD = "Test1234!"


# -----------------------------------------------------------------------------
# Database / App Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def db():
    """Fresh in-memory database for each test."""
    return mongomock.MongoClient()["maintenance_tracker_test"]


@pytest.fixture
def settings():
    return Settings(database_name="maintenance_tracker_test", token_ttl_seconds=3600)


@pytest.fixture
def app(db, settings):
    return create_app(database=db, settings=settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def users(db):
    return UserStore(db)


@pytest.fixture
def tasks(db):
    return TaskStore(db)


@pytest.fixture
def sessions(db):
    return SessionStore(db)


@pytest.fixture
def now():
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Request Helpers
# -----------------------------------------------------------------------------
class Api:
    """Thin wrapper over TestClient for the common request flows."""

    def __init__(self, client: TestClient):
        self.client = client

    @staticmethod
    def auth(token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def register(self, email: str, password: str = PASSWORD, role: Optional[str] = None, **extra):
        payload: Dict[str, Any] = {"email": email, "password": password, **extra}
        if role is not None:
            payload["role"] = role
        return self.client.post("/api/auth/register", json=payload)

    def login(self, email: str, password: str = PASSWORD):
        return self.client.post("/api/auth/login", json={"email": email, "password": password})

    def register_and_login(self, email: str, role: Optional[str] = None) -> Dict[str, Any]:
        reg = self.register(email, role=role)
        assert reg.status_code == 200, reg.text
        res = self.login(email)
        assert res.status_code == 200, res.text
        body = res.json()
        return {"token": body["token"], "id": body["user"]["id"], "role": body["user"]["role"], "email": email}

    def create_task(self, token: Optional[str], **fields):
        return self.client.post("/api/tasks", json=fields, headers=self.auth(token))

    def get_task(self, token: Optional[str], task_id: str):
        return self.client.get(f"/api/tasks/{task_id}", headers=self.auth(token))

    def list_tasks(self, token: Optional[str], **params):
        return self.client.get("/api/tasks", params=params, headers=self.auth(token))

    def set_status(self, token: Optional[str], task_id: str, status: Any):
        return self.client.put(f"/api/tasks/{task_id}/status", json={"status": status}, headers=self.auth(token))

    def assign(self, token: Optional[str], task_id: str, assignee_id: Optional[str]):
        body = {"assigneeId": assignee_id} if assignee_id is not None else {}
        return self.client.put(f"/api/tasks/{task_id}/assign", json=body, headers=self.auth(token))

    def accept(self, token: Optional[str], task_id: str):
        return self.client.put(f"/api/tasks/{task_id}/accept", headers=self.auth(token))

    def delete_task(self, token: Optional[str], task_id: str):
        return self.client.delete(f"/api/tasks/{task_id}", headers=self.auth(token))


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture
def admin(api):
    return api.register_and_login("admin@example.com", role="admin")


@pytest.fixture
def user(api, admin):
    return api.register_and_login("user@example.com")


@pytest.fixture
def other(api, admin):
    return api.register_and_login("other@example.com")


@pytest.fixture
def days_from_now():
    """ISO timestamp offset from the current time by a number of days."""
    def _offset(days: float) -> str:
        return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()
    return _offset
