import os

for var in ("DATABASE_URL", "CLIENT_ID", "CLIENT_SECRET", "DATABASE_TRANSACTIONS"):
    os.environ.pop(var, None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import storage
from main import app


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["test_store"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(database, "client", None)
    monkeypatch.setattr(auth, "CLIENT_ID", None)
    monkeypatch.setattr(auth, "CLIENT_SECRET", None)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    def _make(email="parent@example.com", name="Parent", is_admin=False):
        return storage.upsert_user(email=email, name=name, is_admin=is_admin)
    return _make


@pytest.fixture
def make_category(db):
    def _make(slug="feeding", name="Feeding", display_order=0):
        return storage.create_category({"slug": slug, "name": name, "display_order": display_order})
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Baby Bottle", price="10.00", **kwargs):
        return storage.create_product({"name": name, "price": price, **kwargs})
    return _make


def _login(client, user):
    client.cookies.set(auth.SESSION_COOKIE, auth.create_session(user["id"]))
    return user


@pytest.fixture
def login_as(client):
    return lambda user: _login(client, user)


@pytest.fixture
def user(client, make_user):
    return _login(client, make_user())


@pytest.fixture
def admin(client, make_user):
    return _login(client, make_user(email="admin@example.com", name="Admin", is_admin=True))
