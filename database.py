"""
MongoDB access helpers.

Collections are named after the lowercased schema class (Combat -> "combat").
Every service function receives the database handle explicitly; routes get it
through the get_db dependency so tests can swap in an in-memory database.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import ValidationError

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "combat_matchmaking")

# MongoClient connects lazily, importing this module never touches the network
client = MongoClient(DATABASE_URL, tz_aware=True)
db = client[DATABASE_NAME]

# Fields never handed back to callers, even through populate()
PRIVATE_FIELDS = ("password_hash",)


def get_db() -> Database:
    return db


def parse_object_id(value: Union[str, ObjectId], field: str = "id") -> ObjectId:
    """Normalize a reference coming from the outside into an ObjectId."""
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None) would mint a fresh id instead of failing
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {field}: {value!r}")
    try:
        return ObjectId(value)
    except InvalidId:
        raise ValidationError(f"Invalid {field}: {value!r}")


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at. Returns the new id as a string."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    doc.setdefault("created_at", datetime.now(timezone.utc))
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def strip_private(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k not in PRIVATE_FIELDS}


def populate(database: Database, docs: Iterable[Dict[str, Any]], refs: Dict[str, str]) -> List[Dict[str, Any]]:
    """
    Expand reference fields into the documents they point at.

    refs maps a field name to the collection it references, e.g.
    {"creator": "user", "gym": "gym"}. One $in query is issued per collection;
    references to documents that no longer exist expand to None.
    """
    docs = list(docs)
    if not docs:
        return docs

    wanted: Dict[str, set] = {}
    for field, collection_name in refs.items():
        ids = wanted.setdefault(collection_name, set())
        for d in docs:
            if d.get(field) is not None:
                ids.add(d[field])

    found: Dict[str, Dict[ObjectId, Dict[str, Any]]] = {}
    for collection_name, ids in wanted.items():
        if not ids:
            found[collection_name] = {}
            continue
        cursor = database[collection_name].find({"_id": {"$in": list(ids)}})
        found[collection_name] = {r["_id"]: strip_private(r) for r in cursor}

    for d in docs:
        for field, collection_name in refs.items():
            if field in d:
                d[field] = found[collection_name].get(d[field])
    return docs


def populate_one(database: Database, doc: Optional[Dict[str, Any]], refs: Dict[str, str]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return populate(database, [doc], refs)[0]


def serialize(value: Any) -> Any:
    """Turn a Mongo document (or a list of them) into JSON-friendly data: _id -> id, ObjectId -> str."""
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k in PRIVATE_FIELDS:
                continue
            out["id" if k == "_id" else k] = serialize(v)
        return out
    return value
