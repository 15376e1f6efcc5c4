import os

# Settings are read at import time, so the environment has to be in place first.
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
for key in ("DATABASE_URL", "DATABASE_NAME", "ADMIN_EMAIL", "ADMIN_PASSWORD"):
    os.environ.pop(key, None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from auth import ensure_admin
from main import app

SHIPPING = {
    "full_name": "Bob Buyer",
    "phone": "+251911000000",
    "address": "Bole Road 12",
    "city": "Addis Ababa",
    "state": "Addis Ababa",
    "zip_code": "1000",
}


@pytest.fixture
def shipping():
    return dict(SHIPPING)


@pytest.fixture
def db():
    mongo = mongomock.MongoClient()["brana_test"]
    database.ensure_indexes(mongo)
    return mongo


@pytest.fixture
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    """Register and log in a user; returns (auth headers, profile)."""

    def _make(email: str, password: str = "password123", username=None):
        r = client.post("/auth/register", json={"email": email, "password": password, "username": username})
        assert r.status_code == 201, r.text
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        body = r.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]

    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice@example.com", username="alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob@example.com", username="bob")


@pytest.fixture
def admin(client, db):
    ensure_admin(db, "admin@example.com", "adminpass")
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "adminpass"})
    assert r.status_code == 200, r.text
    body = r.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]


@pytest.fixture
def artwork(client, alice):
    """A for-sale artwork by alice, priced at 100."""
    headers, _ = alice
    r = client.post(
        "/artworks",
        json={"title": "Sunset", "description": "Evening over Entoto", "image_url": "img1", "price": 100},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()
