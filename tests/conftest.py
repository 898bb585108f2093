"""Pytest configuration and fixtures for the ratings platform tests."""

import httpx
import mongomock
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app
from schemas import Role, User
from security import create_access_token, hash_password
from session import MemorySessionStorage, SessionCache

PASSWORD = "Secret@123"

NAMES = {
    Role.ADMIN: "Platform Administrator Account",
    Role.OWNER: "Corner Store Owner Account Name",
    Role.USER: "Regular Platform User Name",
}


@pytest.fixture
def db():
    """Fresh in-memory Mongo database with the production indexes."""
    database = mongomock.MongoClient()["ratings_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api(db):
    """Async HTTP client talking to the app in-process."""
    app.dependency_overrides[get_db] = lambda: db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user directly and return it with its string id."""

    def _make(role=Role.USER, email=None, password=PASSWORD, name=None):
        doc = User(
            name=name or NAMES[role],
            email=email or f"{role.value}@example.com",
            address="12 Market Street",
            password_hash=hash_password(password),
            role=role,
        ).model_dump()
        inserted_id = db["user"].insert_one(dict(doc)).inserted_id
        return {**doc, "id": str(inserted_id)}

    return _make


@pytest.fixture
def auth():
    def _auth(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': user['id']})}"}

    return _auth


@pytest.fixture
def cache():
    session_cache = SessionCache(MemorySessionStorage())
    session_cache.hydrate()
    return session_cache
