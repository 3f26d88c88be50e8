"""
Pytest fixtures for the farm ledger test suite.

Provides:
- An in-memory MongoDB (mongomock) patched onto ``database.db`` for every test
- A FastAPI TestClient with the startup hooks run (indexes + default admin)
- Farmer / work factories for service-level tests
"""
import os

# Must be set before the application modules read their configuration.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DEFAULT_ADMIN_USERNAME", "admin")
os.environ.setdefault("DEFAULT_ADMIN_PASSWORD", "admin123")

import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import database
import ledger


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    client = mongomock.MongoClient()
    test_db = client["farmledger_test"]
    monkeypatch.setattr(database, "db", test_db)
    database.ensure_indexes()
    yield test_db
    client.close()


@pytest.fixture
def client():
    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    res = client.post("/auth/admin/login", json={"username": "admin", "password": "admin123"})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['token']}"}


@pytest.fixture
def make_farmer():
    counter = {"n": 0}

    def _make(name="Ravi", phone=None, password="secret"):
        counter["n"] += 1
        return accounts.create_farmer(name, phone or f"90000000{counter['n']:02d}", password)

    return _make


@pytest.fixture
def farmer(make_farmer):
    return make_farmer()


@pytest.fixture
def make_work(farmer):
    def _make(minutes=60, rate=100, farmer_id=None, work_type="Ploughing", notes=None):
        return ledger.create_work(farmer_id or farmer["_id"], work_type, minutes, rate, notes)

    return _make
