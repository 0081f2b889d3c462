"""
Shared fixtures: an in-memory Mongo database and an API client bound to it.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

from database import get_db
from main import app


@pytest.fixture
def db():
    """Fresh in-memory database for each test."""
    return mongomock.MongoClient()["combat_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def users(db):
    """Three boxers: alice, bob and carol. Returns their ids as strings."""
    ids = db["user"].insert_many([
        {"name": "alice", "weight": 61},
        {"name": "bob", "weight": 64},
        {"name": "carol", "weight": 57},
    ]).inserted_ids
    return {name: str(i) for name, i in zip(("alice", "bob", "carol"), ids)}


@pytest.fixture
def gym_id(db):
    return str(db["gym"].insert_one({
        "name": "Iron Fist",
        "place": "Barcelona",
        "price": 30.0,
        "email": "iron@fist.com",
        "phone": "600000000",
        "password_hash": "x$y",
        "is_hidden": False,
    }).inserted_id)


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Cheapest bcrypt cost factor so password hashing doesn't dominate the suite."""
    import gym_service

    monkeypatch.setattr(gym_service, "BCRYPT_ROUNDS", 4)
