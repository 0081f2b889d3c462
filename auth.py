"""
Bearer-token guard for gym endpoints that change state.
"""
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException
from pymongo.database import Database

from database import get_db
from gym_service import get_gym_for_token


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def require_gym(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    gym = get_gym_for_token(db, token)
    if not gym:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return gym
