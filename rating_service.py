"""
Ratings left by boxers after a combat. Ratings are append-only.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Union

from pydantic import BaseModel
from pymongo.database import Database

from database import create_document, parse_object_id
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

COLLECTION = "rating"
REF_FIELDS = ("combat", "from_user", "to_user")


def create_rating(db: Database, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    for field in REF_FIELDS:
        if not doc.get(field):
            raise ValidationError(f"{field} is required")
        doc[field] = parse_object_id(doc[field], field)

    score = doc.get("score")
    if not isinstance(score, int) or isinstance(score, bool) or not 1 <= score <= 5:
        raise ValidationError("score must be an integer between 1 and 5")
    if not db["combat"].find_one({"_id": doc["combat"]}, {"_id": 1}):
        raise NotFoundError("Combat not found")

    doc.setdefault("created_at", datetime.now(timezone.utc))
    rating_id = create_document(db, COLLECTION, doc)
    logger.info("Rating %s stored for combat %s", rating_id, doc["combat"])
    return db[COLLECTION].find_one({"_id": parse_object_id(rating_id)})


def _summary(ratings) -> Dict[str, Any]:
    ratings = list(ratings)
    average = round(sum(r["score"] for r in ratings) / len(ratings), 2) if ratings else None
    return {"ratings": ratings, "count": len(ratings), "average_score": average}


def get_ratings_for_combat(db: Database, combat_id: str) -> Dict[str, Any]:
    cid = parse_object_id(combat_id, "combat_id")
    return _summary(db[COLLECTION].find({"combat": cid}).sort("created_at", -1))


def get_ratings_for_user(db: Database, user_id: str) -> Dict[str, Any]:
    """Ratings the user has received."""
    uid = parse_object_id(user_id, "user_id")
    return _summary(db[COLLECTION].find({"to_user": uid}).sort("created_at", -1))
