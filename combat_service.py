"""
Combat persistence: creation, invitation workflow, listings and visibility.

Every function takes the Mongo database handle as its first argument.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo.database import Database
from pymongo.results import DeleteResult, UpdateResult

from database import create_document, parse_object_id, populate, populate_one
from errors import AuthorizationError, InvalidStateError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

COLLECTION = "combat"
REF_FIELDS = ("creator", "opponent", "gym")
POPULATE_ALL = {"creator": "user", "opponent": "user", "gym": "gym"}
POPULATE_BOXERS = {"creator": "user", "opponent": "user"}

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"


def _as_dict(data: Union[BaseModel, Dict[str, Any]], exclude_unset: bool = False) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=exclude_unset)
    return dict(data)


def _normalize_refs(data: Dict[str, Any]) -> Dict[str, Any]:
    for field in REF_FIELDS:
        if data.get(field) is not None:
            data[field] = parse_object_id(data[field], field)
    return data


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size < 1:
        raise ValidationError("page_size must be >= 1")


def create_combat(db: Database, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a new combat in pending state and return the stored document."""
    doc = _as_dict(data)
    missing = [f for f in REF_FIELDS if not doc.get(f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    doc = _normalize_refs(doc)
    if doc["creator"] == doc["opponent"]:
        raise ValidationError("A user cannot challenge themselves")

    doc["status"] = PENDING
    doc.setdefault("is_hidden", False)
    combat_id = create_document(db, COLLECTION, doc)
    logger.info("Combat %s created by %s against %s", combat_id, doc["creator"], doc["opponent"])
    return db[COLLECTION].find_one({"_id": parse_object_id(combat_id)})


def get_future_combats(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Accepted combats where the user is either side."""
    uid = parse_object_id(user_id, "user_id")
    docs = db[COLLECTION].find({
        "status": ACCEPTED,
        "$or": [{"creator": uid}, {"opponent": uid}],
    })
    return populate(db, docs, POPULATE_ALL)


def get_pending_invitations(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Invitations received by the user that are still waiting for an answer."""
    uid = parse_object_id(user_id, "user_id")
    docs = db[COLLECTION].find({"opponent": uid, "status": PENDING})
    return populate(db, docs, POPULATE_ALL)


def get_sent_invitations(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Invitations sent by the user that are still waiting for an answer."""
    uid = parse_object_id(user_id, "user_id")
    docs = db[COLLECTION].find({"creator": uid, "status": PENDING})
    return populate(db, docs, POPULATE_ALL)


def respond_to_combat_invitation(db: Database, combat_id: str, user_id: str, status: str) -> Dict[str, Any]:
    """
    Let the invited opponent accept or reject a combat.

    Accepting persists the new status and returns the updated combat.
    Rejecting removes the combat altogether and returns {"deleted": True}.
    """
    cid = parse_object_id(combat_id, "combat_id")
    combat = db[COLLECTION].find_one({"_id": cid})
    if not combat:
        raise NotFoundError("Combat not found")
    if str(combat["opponent"]) != str(user_id):
        raise AuthorizationError("Only the invited user can respond to this combat")

    if status == ACCEPTED:
        db[COLLECTION].update_one({"_id": cid}, {"$set": {"status": ACCEPTED}})
        combat["status"] = ACCEPTED
        logger.info("Combat %s accepted by %s", combat_id, user_id)
        return combat
    if status == REJECTED:
        db[COLLECTION].delete_one({"_id": cid})
        logger.info("Combat %s rejected by %s and removed", combat_id, user_id)
        return {"deleted": True}
    raise InvalidStateError(f"Invalid status: {status!r}")


def get_all_combats(db: Database, page: int, page_size: int) -> Dict[str, Any]:
    _check_page(page, page_size)
    try:
        skip = (page - 1) * page_size
        total_combats = db[COLLECTION].count_documents({})
        total_pages = math.ceil(total_combats / page_size)
        combats = list(db[COLLECTION].find().skip(skip).limit(page_size))
        return {
            "combats": combats,
            "total_combats": total_combats,
            "total_pages": total_pages,
            "current_page": page,
            "page_size": page_size,
        }
    except Exception:
        logger.exception("Error in get_all_combats")
        raise


def get_combat_by_id(db: Database, combat_id: str) -> Optional[Dict[str, Any]]:
    cid = parse_object_id(combat_id, "combat_id")
    return populate_one(db, db[COLLECTION].find_one({"_id": cid}), POPULATE_ALL)


def update_combat(db: Database, combat_id: str, data: Union[BaseModel, Dict[str, Any]]) -> UpdateResult:
    """Partial update. Returns the raw acknowledgment; re-fetch to see the new state."""
    cid = parse_object_id(combat_id, "combat_id")
    changes = _as_dict(data, exclude_unset=True)
    if "status" in changes:
        raise ValidationError("status can only be changed by responding to the invitation")
    nulled = [f for f in REF_FIELDS if f in changes and changes[f] is None]
    if nulled:
        raise ValidationError(f"Required fields cannot be cleared: {', '.join(nulled)}")
    changes = _normalize_refs(changes)
    changes.pop("_id", None)
    if not changes:
        raise ValidationError("No fields to update")

    if "creator" in changes or "opponent" in changes:
        current = db[COLLECTION].find_one({"_id": cid}, {"creator": 1, "opponent": 1})
        if current:
            creator = changes.get("creator", current.get("creator"))
            opponent = changes.get("opponent", current.get("opponent"))
            if creator == opponent:
                raise ValidationError("A user cannot challenge themselves")
    return db[COLLECTION].update_one({"_id": cid}, {"$set": changes})


def delete_combat(db: Database, combat_id: str) -> DeleteResult:
    cid = parse_object_id(combat_id, "combat_id")
    return db[COLLECTION].delete_one({"_id": cid})


def get_boxers_by_combat_id(db: Database, combat_id: str) -> List[Optional[Dict[str, Any]]]:
    cid = parse_object_id(combat_id, "combat_id")
    combat = populate_one(db, db[COLLECTION].find_one({"_id": cid}), POPULATE_BOXERS)
    if not combat:
        return []
    return [combat["creator"], combat["opponent"]]


def hide_combat(db: Database, combat_id: str, is_hidden: bool) -> UpdateResult:
    cid = parse_object_id(combat_id, "combat_id")
    return db[COLLECTION].update_one({"_id": cid}, {"$set": {"is_hidden": is_hidden}})


def get_combats_by_gym_id(db: Database, gym_id: str, page: int, page_size: int) -> Dict[str, Any]:
    """Visible combats held at a gym, one page at a time, with references expanded."""
    _check_page(page, page_size)
    query = {"gym": parse_object_id(gym_id, "gym_id"), "is_hidden": False}
    try:
        skip = (page - 1) * page_size
        total_combats = db[COLLECTION].count_documents(query)
        total_pages = math.ceil(total_combats / page_size)
        docs = db[COLLECTION].find(query).skip(skip).limit(page_size)
        return {
            "combats": populate(db, docs, POPULATE_ALL),
            "total_combats": total_combats,
            "total_pages": total_pages,
            "current_page": page,
            "page_size": page_size,
        }
    except Exception:
        logger.exception("Error in get_combats_by_gym_id")
        raise
