import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Settings are read from the environment at import time by the modules below
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import combat_service
import gym_service
import rating_service
from auth import require_gym
from database import get_db, serialize
from errors import AppError, AuthorizationError
from notifications import notify_users
from schemas import (
    AccessToken,
    Combat,
    CombatPage,
    CombatPublic,
    CombatResponse,
    CombatUpdate,
    Gym,
    GymPage,
    GymPublic,
    GymUpdate,
    LoginRequest,
    Rating,
    RatingList,
    RatingPublic,
    RefreshRequest,
    TokenPair,
    Visibility,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Combat Matchmaking API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Routes
@app.get("/")
def root():
    return {"service": "Combat Matchmaking API", "version": "1.0.0"}


# 1) Gyms
@app.get("/gym/current", response_model=GymPublic)
def current_gym(gym: Dict[str, Any] = Depends(require_gym)):
    return _gym_public(gym)


@app.post("/gym", response_model=GymPublic, status_code=201)
def create_gym(gym: Gym, db: Database = Depends(get_db)):
    return _gym_public(gym_service.create_gym(db, gym))


@app.get("/gym", response_model=GymPage)
def list_gyms(
    page: int = 1,
    page_size: int = Query(10, alias="pageSize"),
    db: Database = Depends(get_db),
):
    result = gym_service.get_all_gyms(db, page, page_size)
    result["gyms"] = [_gym_public(g) for g in result["gyms"]]
    return result


@app.get("/gym/{gym_id}", response_model=GymPublic)
def get_gym(gym_id: str, db: Database = Depends(get_db)):
    gym = gym_service.get_gym_by_id(db, gym_id)
    if not gym:
        raise HTTPException(status_code=404, detail="Gym not found")
    return _gym_public(gym)


@app.put("/gym/{gym_id}", response_model=GymPublic)
def update_gym(
    gym_id: str,
    payload: GymUpdate,
    db: Database = Depends(get_db),
    current: Dict[str, Any] = Depends(require_gym),
):
    _ensure_self(current, gym_id)
    res = gym_service.update_gym(db, gym_id, payload)
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Gym not found")
    return _gym_public(gym_service.get_gym_by_id(db, gym_id))


@app.delete("/gym/{gym_id}")
def delete_gym(
    gym_id: str,
    db: Database = Depends(get_db),
    current: Dict[str, Any] = Depends(require_gym),
):
    _ensure_self(current, gym_id)
    res = gym_service.delete_gym(db, gym_id)
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Gym not found")
    return {"deleted": True}


@app.put("/gym/{gym_id}/oculto", response_model=GymPublic)
def hide_gym(
    gym_id: str,
    payload: Visibility,
    db: Database = Depends(get_db),
    current: Dict[str, Any] = Depends(require_gym),
):
    _ensure_self(current, gym_id)
    res = gym_service.hide_gym(db, gym_id, payload.is_hidden)
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Gym not found")
    return _gym_public(gym_service.get_gym_by_id(db, gym_id))


@app.post("/gym/login", response_model=TokenPair)
def login_gym(payload: LoginRequest, db: Database = Depends(get_db)):
    access, refresh = gym_service.login_gym(db, payload.email, payload.password)
    return TokenPair(
        access_token=access,
        refresh_token=refresh,
        expires_in=gym_service.ACCESS_TOKEN_TTL_SECONDS,
    )


@app.post("/gym/refresh", response_model=AccessToken)
def refresh_gym_token(payload: RefreshRequest, db: Database = Depends(get_db)):
    access = gym_service.refresh_gym_token(db, payload.refresh_token)
    return AccessToken(access_token=access, expires_in=gym_service.ACCESS_TOKEN_TTL_SECONDS)


# 2) Combats
@app.post("/combat", response_model=CombatPublic, status_code=201)
def create_combat(combat: Combat, db: Database = Depends(get_db)):
    created = combat_service.create_combat(db, combat)

    # Push notification to the challenged user (if tokens available)
    sent = notify_users(
        db,
        [created["opponent"]],
        title="New Combat Challenge",
        body="You have been challenged to a combat",
        data={"type": "combat_invitation", "id": str(created["_id"])},
    )
    if sent:
        logger.info("Invitation for combat %s pushed to %d device(s)", created["_id"], sent)

    return _combat_public(created)


@app.get("/combat", response_model=CombatPage)
def list_combats(
    page: int = 1,
    page_size: int = Query(10, alias="pageSize"),
    db: Database = Depends(get_db),
):
    return _combat_page(combat_service.get_all_combats(db, page, page_size))


@app.get("/combat/gym/{gym_id}", response_model=CombatPage)
def list_gym_combats(
    gym_id: str,
    page: int = 1,
    page_size: int = Query(10, alias="pageSize"),
    db: Database = Depends(get_db),
):
    return _combat_page(combat_service.get_combats_by_gym_id(db, gym_id, page, page_size))


@app.get("/combat/future/{user_id}", response_model=List[CombatPublic])
def future_combats(user_id: str, db: Database = Depends(get_db)):
    return [_combat_public(c) for c in combat_service.get_future_combats(db, user_id)]


@app.get("/combat/invitations/pending/{user_id}", response_model=List[CombatPublic])
def pending_invitations(user_id: str, db: Database = Depends(get_db)):
    return [_combat_public(c) for c in combat_service.get_pending_invitations(db, user_id)]


@app.get("/combat/invitations/sent/{user_id}", response_model=List[CombatPublic])
def sent_invitations(user_id: str, db: Database = Depends(get_db)):
    return [_combat_public(c) for c in combat_service.get_sent_invitations(db, user_id)]


@app.get("/combat/{combat_id}", response_model=CombatPublic)
def get_combat(combat_id: str, db: Database = Depends(get_db)):
    combat = combat_service.get_combat_by_id(db, combat_id)
    if not combat:
        raise HTTPException(status_code=404, detail="Combat not found")
    return _combat_public(combat)


@app.put("/combat/{combat_id}")
def update_combat(combat_id: str, payload: CombatUpdate, db: Database = Depends(get_db)):
    res = combat_service.update_combat(db, combat_id, payload)
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Combat not found")
    return {
        "acknowledged": res.acknowledged,
        "matched_count": res.matched_count,
        "modified_count": res.modified_count,
    }


@app.delete("/combat/{combat_id}")
def delete_combat(combat_id: str, db: Database = Depends(get_db)):
    res = combat_service.delete_combat(db, combat_id)
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Combat not found")
    return {"acknowledged": res.acknowledged, "deleted_count": res.deleted_count}


@app.get("/combat/{combat_id}/boxers")
def combat_boxers(combat_id: str, db: Database = Depends(get_db)):
    return serialize(combat_service.get_boxers_by_combat_id(db, combat_id))


@app.put("/combat/{combat_id}/oculto")
def hide_combat(combat_id: str, payload: Visibility, db: Database = Depends(get_db)):
    res = combat_service.hide_combat(db, combat_id, payload.is_hidden)
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Combat not found")
    return {"id": combat_id, "is_hidden": payload.is_hidden}


@app.put("/combat/{combat_id}/respond")
def respond_to_combat(combat_id: str, payload: CombatResponse, db: Database = Depends(get_db)):
    result = combat_service.respond_to_combat_invitation(db, combat_id, payload.user_id, payload.status)
    if result.get("deleted"):
        return result
    return _combat_public(result)


# 3) Ratings
@app.post("/ratings", response_model=RatingPublic, status_code=201)
def create_rating(rating: Rating, db: Database = Depends(get_db)):
    return RatingPublic(**serialize(rating_service.create_rating(db, rating)))


@app.get("/ratings/combat/{combat_id}", response_model=RatingList)
def combat_ratings(combat_id: str, db: Database = Depends(get_db)):
    return serialize(rating_service.get_ratings_for_combat(db, combat_id))


@app.get("/ratings/user/{user_id}", response_model=RatingList)
def user_ratings(user_id: str, db: Database = Depends(get_db)):
    return serialize(rating_service.get_ratings_for_user(db, user_id))


# Helpers

def _ensure_self(current: Dict[str, Any], gym_id: str) -> None:
    if str(current["_id"]) != gym_id:
        raise AuthorizationError("A gym can only modify its own account")


def _gym_public(g: Optional[Dict[str, Any]]) -> GymPublic:
    if g is None:
        raise HTTPException(status_code=404, detail="Gym not found")
    return GymPublic(
        id=str(g.get("_id")),
        name=g.get("name"),
        place=g.get("place"),
        price=g.get("price"),
        email=g.get("email"),
        phone=g.get("phone"),
        is_hidden=g.get("is_hidden", False),
    )


def _combat_public(c: Dict[str, Any]) -> CombatPublic:
    return CombatPublic(**serialize(c))


def _combat_page(result: Dict[str, Any]) -> CombatPage:
    return CombatPage(
        combats=[_combat_public(c) for c in result["combats"]],
        total_combats=result["total_combats"],
        total_pages=result["total_pages"],
        current_page=result["current_page"],
        page_size=result["page_size"],
    )


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
