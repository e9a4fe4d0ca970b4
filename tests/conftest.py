"""
Pytest fixtures for the Habit Tracker API tests
"""
import asyncio
import os
import tempfile
from datetime import timedelta

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="habit-uploads-"))

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from habit_tracker import config, images
from habit_tracker.auth import new_user_doc
from habit_tracker.database import ensure_indexes, get_db
from habit_tracker.habits import create_default_habits
from habit_tracker.helpers import iso_ts, now_utc
from habit_tracker.security import create_admin_token, create_user_token
from habit_tracker.server import app

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "s3cret-pass"


def run(coro):
    """Run a coroutine against the mock database from synchronous test code"""
    return asyncio.run(coro)


@pytest.fixture
def db():
    """Fresh in-memory database for each test, with the real indexes"""
    database = AsyncMongoMockClient()["habit_tracker_test"]
    run(ensure_indexes(database))
    return database


@pytest.fixture
def client(db):
    """Test client with the database dependency overridden"""
    app.dependency_overrides[get_db] = lambda: db
    # No context manager: startup would try to connect to MONGO_URL
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(images, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def admin_credentials(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_USERNAME", ADMIN_USERNAME)
    monkeypatch.setattr(config, "ADMIN_PASSWORD", ADMIN_PASSWORD)
    return {"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_admin_token(ADMIN_USERNAME)}"}


@pytest.fixture
def make_user(db):
    """Factory inserting a user in the given subscription state"""
    counter = {"n": 0}

    def _make(status="active", with_habits=False, **fields):
        counter["n"] += 1
        n = counter["n"]
        now = now_utc()
        doc = new_user_doc(
            {"sub": f"google-{n}", "email": f"user{n}@example.com", "name": f"User {n}"}, now
        )
        doc["subscription_status"] = status
        if status == "active":
            doc["subscription_date"] = iso_ts(now)
            doc["subscription_expiry"] = iso_ts(now + config.SUBSCRIPTION_LENGTH)
        doc.update(fields)
        run(db.users.insert_one(doc))
        if with_habits:
            run(create_default_habits(db, doc["_id"], now))
        return doc

    return _make


@pytest.fixture
def headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {create_user_token(user['_id'])}"}

    return _headers


@pytest.fixture
def user(make_user):
    """Subscribed user with the default habit set"""
    return make_user("active", with_habits=True)


@pytest.fixture
def auth_headers(user, headers_for):
    return headers_for(user)


@pytest.fixture
def lapsed_expiry():
    return iso_ts(now_utc() - timedelta(days=1))
