"""
Gym accounts: registration, listing, profile updates and token sessions.

Passwords are stored as bcrypt hashes. Login hands out an opaque access
token and a refresh token; only their sha256 digests are persisted in the
session collection.
"""
import hashlib
import logging
import math
import os
import secrets
import time
from typing import Any, Dict, Optional, Tuple, Union

import bcrypt
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from pymongo.results import DeleteResult, UpdateResult

from database import create_document, parse_object_id, strip_private
from errors import AuthenticationError, InvalidTokenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

COLLECTION = "gym"
SESSIONS = "session"
ALLOWED_PAGE_SIZES = (10, 25, 50)

ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "900"))
REFRESH_TOKEN_TTL_SECONDS = int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", "604800"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
    except (AttributeError, ValueError):
        # malformed stored hash or oversized password
        return False


def ensure_indexes(db: Database) -> None:
    db[COLLECTION].create_index("email", unique=True)


def _email_taken(db: Database, email: Optional[str], exclude_id=None) -> bool:
    query: Dict[str, Any] = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db[COLLECTION].find_one(query, {"_id": 1}) is not None


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _issue_token(db: Database, gym_id, kind: str, ttl: int) -> str:
    token = secrets.token_urlsafe(32)
    db[SESSIONS].insert_one({
        "gym_id": gym_id,
        "token_hash": _hash_token(token),
        "kind": kind,
        "expires_at": time.time() + ttl,
    })
    return token


def _find_session(db: Database, token: str, kind: str) -> Optional[Dict[str, Any]]:
    return db[SESSIONS].find_one({
        "token_hash": _hash_token(token),
        "kind": kind,
        "expires_at": {"$gt": time.time()},
    })


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=True)
    return dict(data)


def create_gym(db: Database, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    doc = _as_dict(data)
    password = doc.pop("password", None)
    if not password:
        raise ValidationError("password is required")
    if _email_taken(db, doc.get("email")):
        raise ValidationError("A gym with this email already exists")

    doc["password_hash"] = hash_password(password)
    doc.setdefault("is_hidden", False)
    ensure_indexes(db)
    try:
        gym_id = create_document(db, COLLECTION, doc)
    except DuplicateKeyError:
        raise ValidationError("A gym with this email already exists")
    logger.info("Gym %s registered (%s)", gym_id, doc.get("email"))
    return strip_private(db[COLLECTION].find_one({"_id": parse_object_id(gym_id)}))


def get_all_gyms(db: Database, page: int, page_size: int) -> Dict[str, Any]:
    """Visible gyms, paginated. page_size must be one of ALLOWED_PAGE_SIZES."""
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size not in ALLOWED_PAGE_SIZES:
        raise ValidationError(f"Invalid page size, use one of {ALLOWED_PAGE_SIZES}")
    try:
        query = {"is_hidden": False}
        total_gyms = db[COLLECTION].count_documents(query)
        gyms = db[COLLECTION].find(query).skip((page - 1) * page_size).limit(page_size)
        return {
            "gyms": [strip_private(g) for g in gyms],
            "total_gyms": total_gyms,
            "total_pages": math.ceil(total_gyms / page_size),
            "current_page": page,
            "page_size": page_size,
        }
    except Exception:
        logger.exception("Error in get_all_gyms")
        raise


def get_gym_by_id(db: Database, gym_id: str) -> Optional[Dict[str, Any]]:
    return strip_private(db[COLLECTION].find_one({"_id": parse_object_id(gym_id, "gym_id")}))


def update_gym(db: Database, gym_id: str, data: Union[BaseModel, Dict[str, Any]]) -> UpdateResult:
    gid = parse_object_id(gym_id, "gym_id")
    # explicit nulls are ignored, every stored gym keeps all of its fields
    changes = {k: v for k, v in _as_dict(data).items() if v is not None}
    changes.pop("_id", None)
    changes.pop("password_hash", None)
    password = changes.pop("password", None)
    if password:
        changes["password_hash"] = hash_password(password)
    if "email" in changes and _email_taken(db, changes["email"], exclude_id=gid):
        raise ValidationError("A gym with this email already exists")
    if not changes:
        raise ValidationError("No fields to update")
    ensure_indexes(db)
    try:
        return db[COLLECTION].update_one({"_id": gid}, {"$set": changes})
    except DuplicateKeyError:
        raise ValidationError("A gym with this email already exists")


def delete_gym(db: Database, gym_id: str) -> DeleteResult:
    gid = parse_object_id(gym_id, "gym_id")
    db[SESSIONS].delete_many({"gym_id": gid})
    return db[COLLECTION].delete_one({"_id": gid})


def hide_gym(db: Database, gym_id: str, is_hidden: bool) -> UpdateResult:
    gid = parse_object_id(gym_id, "gym_id")
    return db[COLLECTION].update_one({"_id": gid}, {"$set": {"is_hidden": is_hidden}})


def login_gym(db: Database, email: str, password: str) -> Tuple[str, str]:
    """Check credentials and open a session. Returns (access_token, refresh_token)."""
    gym = db[COLLECTION].find_one({"email": email})
    if not gym:
        raise NotFoundError("Gym not found")
    if not verify_password(password, gym.get("password_hash", "")):
        raise AuthenticationError("Invalid credentials")

    access = _issue_token(db, gym["_id"], "access", ACCESS_TOKEN_TTL_SECONDS)
    refresh = _issue_token(db, gym["_id"], "refresh", REFRESH_TOKEN_TTL_SECONDS)
    logger.info("Gym %s logged in", gym["_id"])
    return access, refresh


def refresh_gym_token(db: Database, refresh_token: str) -> str:
    session = _find_session(db, refresh_token, "refresh")
    if not session:
        raise InvalidTokenError("Invalid refresh token")
    return _issue_token(db, session["gym_id"], "access", ACCESS_TOKEN_TTL_SECONDS)


def get_gym_for_token(db: Database, access_token: str) -> Optional[Dict[str, Any]]:
    session = _find_session(db, access_token, "access")
    if not session:
        return None
    return strip_private(db[COLLECTION].find_one({"_id": session["gym_id"]}))
