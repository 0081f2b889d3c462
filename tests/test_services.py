"""
tests/test_services.py - Gym accounts, ratings and database helpers.
"""
import time
from types import SimpleNamespace

import pytest
from bson import ObjectId

import gym_service
import notifications
import rating_service
from database import parse_object_id, populate, serialize
from errors import AuthenticationError, InvalidTokenError, NotFoundError, ValidationError


class TestObjectIds:
    def test_parse_string(self):
        oid = ObjectId()
        assert parse_object_id(str(oid)) == oid

    def test_passthrough(self):
        oid = ObjectId()
        assert parse_object_id(oid) is oid

    @pytest.mark.parametrize("value", ["", "xyz", "123", None])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_object_id(value, "creator")

    def test_serialize_renames_and_strips(self):
        oid = ObjectId()
        out = serialize({"_id": oid, "gym": {"_id": oid, "password_hash": "h"}, "tags": [oid]})
        assert out == {"id": str(oid), "gym": {"id": str(oid)}, "tags": [str(oid)]}

    def test_populate_batches_per_collection(self, db, users):
        docs = [{"a": ObjectId(users["alice"]), "b": ObjectId(users["bob"])}]
        expanded = populate(db, docs, {"a": "user", "b": "user"})
        assert expanded[0]["a"]["name"] == "alice"
        assert expanded[0]["b"]["name"] == "bob"
        assert populate(db, [], {"a": "user"}) == []


class TestGymService:
    DATA = {
        "name": "Brass Knuckle",
        "place": "Sevilla",
        "price": 15.0,
        "email": "brass@example.com",
        "phone": "600111222",
        "password": "hunter22",
    }

    def test_password_hashing(self):
        stored = gym_service.hash_password("hunter22")
        assert gym_service.verify_password("hunter22", stored)
        assert not gym_service.verify_password("hunter23", stored)
        assert not gym_service.verify_password("hunter22", "garbage")

    def test_create_requires_password(self, db):
        data = dict(self.DATA)
        del data["password"]
        with pytest.raises(ValidationError):
            gym_service.create_gym(db, data)

    def test_login_tokens(self, db):
        gym = gym_service.create_gym(db, self.DATA)
        access, refresh = gym_service.login_gym(db, self.DATA["email"], "hunter22")
        assert gym_service.get_gym_for_token(db, access)["_id"] == gym["_id"]
        assert gym_service.get_gym_for_token(db, refresh) is None
        stored = db["session"].find_one({"kind": "access"})
        assert stored["token_hash"] != access

    def test_login_errors(self, db):
        gym_service.create_gym(db, self.DATA)
        with pytest.raises(AuthenticationError):
            gym_service.login_gym(db, self.DATA["email"], "nope")
        with pytest.raises(NotFoundError):
            gym_service.login_gym(db, "missing@example.com", "hunter22")

    def test_expired_refresh(self, db):
        gym_service.create_gym(db, self.DATA)
        _, refresh = gym_service.login_gym(db, self.DATA["email"], "hunter22")
        db["session"].update_many({"kind": "refresh"}, {"$set": {"expires_at": time.time() - 1}})
        with pytest.raises(InvalidTokenError):
            gym_service.refresh_gym_token(db, refresh)

    def test_update_rehashes_password(self, db):
        gym = gym_service.create_gym(db, self.DATA)
        gym_service.update_gym(db, str(gym["_id"]), {"password": "new-password"})
        gym_service.login_gym(db, self.DATA["email"], "new-password")
        with pytest.raises(AuthenticationError):
            gym_service.login_gym(db, self.DATA["email"], "hunter22")

    def test_pagination(self, db):
        for i in range(12):
            gym_service.create_gym(db, dict(self.DATA, email=f"gym{i}@example.com"))
        page = gym_service.get_all_gyms(db, 2, 10)
        assert len(page["gyms"]) == 2
        assert page["total_pages"] == 2
        assert all("password_hash" not in g for g in page["gyms"])

    def test_bcrypt_hash_format(self):
        stored = gym_service.hash_password("hunter22")
        assert stored.startswith("$2b$")
        assert "hunter22" not in stored

    def test_oversized_password(self):
        with pytest.raises(ValidationError):
            gym_service.hash_password("x" * 73)

    def test_malformed_stored_hash_fails_login(self, db, gym_id):
        # the fixture gym carries a hash that is not a bcrypt string
        with pytest.raises(AuthenticationError):
            gym_service.login_gym(db, "iron@fist.com", "whatever")

    def test_null_fields_ignored_on_update(self, db):
        gym = gym_service.create_gym(db, self.DATA)
        res = gym_service.update_gym(db, str(gym["_id"]), {"name": None, "price": 20.0})
        assert res.matched_count == 1
        stored = db["gym"].find_one({"_id": gym["_id"]})
        assert stored["name"] == "Brass Knuckle"
        assert stored["price"] == 20.0
        with pytest.raises(ValidationError):
            gym_service.update_gym(db, str(gym["_id"]), {"name": None})

    def test_email_unique_index(self, db, monkeypatch):
        first = gym_service.create_gym(db, self.DATA)
        other = gym_service.create_gym(db, dict(self.DATA, email="other@example.com"))
        # a concurrent registration slips past the lookup, the index still refuses it
        monkeypatch.setattr(gym_service, "_email_taken", lambda *a, **kw: False)
        with pytest.raises(ValidationError):
            gym_service.create_gym(db, self.DATA)
        with pytest.raises(ValidationError):
            gym_service.update_gym(db, str(other["_id"]), {"email": self.DATA["email"]})
        assert db["gym"].count_documents({"email": self.DATA["email"]}) == 1
        assert db["gym"].find_one({"_id": first["_id"]}) is not None


class TestRatingService:
    def _combat(self, db, users, gym_id):
        return db["combat"].insert_one({
            "creator": ObjectId(users["alice"]),
            "opponent": ObjectId(users["bob"]),
            "gym": ObjectId(gym_id),
            "status": "accepted",
        }).inserted_id

    def test_references_normalized(self, db, users, gym_id):
        combat_id = self._combat(db, users, gym_id)
        rating = rating_service.create_rating(db, {
            "combat": str(combat_id),
            "from_user": users["alice"],
            "to_user": users["bob"],
            "score": 5,
        })
        assert rating["combat"] == combat_id
        assert isinstance(rating["to_user"], ObjectId)
        assert rating["created_at"] is not None

    @pytest.mark.parametrize("score", [0, 6, 2.5, "3", True])
    def test_score_bounds(self, db, users, gym_id, score):
        combat_id = self._combat(db, users, gym_id)
        with pytest.raises(ValidationError):
            rating_service.create_rating(db, {
                "combat": str(combat_id),
                "from_user": users["alice"],
                "to_user": users["bob"],
                "score": score,
            })

    def test_missing_combat(self, db, users):
        with pytest.raises(NotFoundError):
            rating_service.create_rating(db, {
                "combat": str(ObjectId()),
                "from_user": users["alice"],
                "to_user": users["bob"],
                "score": 3,
            })


class TestNotifications:
    def test_no_tokens_skips_firebase(self, db, users, monkeypatch):
        monkeypatch.setattr(notifications, "init_firebase", lambda: pytest.fail("firebase initialized"))
        assert notifications.notify_users(db, [users["alice"]], "title", "body") == 0

    def test_sends_to_device_tokens(self, db, users, monkeypatch):
        db["user"].update_one({"_id": ObjectId(users["bob"])}, {"$set": {"device_tokens": ["tok1", "tok2"]}})
        sent = {}

        def fake_send(message):
            sent["tokens"] = message.tokens
            return SimpleNamespace(success_count=len(message.tokens))

        monkeypatch.setattr(notifications, "init_firebase", lambda: True)
        monkeypatch.setattr(notifications.messaging, "send_each_for_multicast", fake_send)
        count = notifications.notify_users(db, [users["bob"]], "title", "body", {"type": "combat_invitation"})
        assert count == 2
        assert sent["tokens"] == ["tok1", "tok2"]

    def test_send_failure_is_swallowed(self, db, users, monkeypatch):
        db["user"].update_one({"_id": ObjectId(users["bob"])}, {"$set": {"device_tokens": ["tok1"]}})

        def boom(message):
            raise RuntimeError("fcm down")

        monkeypatch.setattr(notifications, "init_firebase", lambda: True)
        monkeypatch.setattr(notifications.messaging, "send_each_for_multicast", boom)
        assert notifications.notify_users(db, [users["bob"]], "title", "body") == 0

    def test_lookup_failure_is_swallowed(self, db, users, monkeypatch):
        def broken_lookup(*args, **kwargs):
            raise RuntimeError("mongo unavailable")

        monkeypatch.setattr(notifications, "get_documents", broken_lookup)
        assert notifications.notify_users(db, [users["bob"]], "title", "body") == 0
