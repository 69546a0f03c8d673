import pytest
from fastapi.testclient import TestClient

from auth import hash_password
from database import Database, get_db
from main import app
from manager import EventManager


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "events.db"))


@pytest.fixture
def manager(db):
    return EventManager(db)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def create_user(db):
    def _create(name, role="user", password="password123"):
        return db.add_user(name, f"{name.lower()}@example.com", hash_password(password), role)
    return _create


@pytest.fixture
def event_fields():
    return {
        "title": "Python Workshop",
        "description": "Hands-on introduction to FastAPI",
        "date": "2025-05-01",
        "time": "10:00 AM",
        "location": "Room 101",
        "capacity": 2,
        "price": 10.0,
        "category": "Workshop",
    }
