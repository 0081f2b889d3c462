"""
Database Schemas for the combat matchmaking API

Each Pydantic model represents a collection in MongoDB. Class name lowercased
is used as the collection name by convention:
- gym: boxing gyms hosting combats
- combat: a challenge between two users at a gym
- rating: a user's review of another user after a combat
- session: bearer tokens issued to gyms

References between collections travel as string ids on the wire and are
stored as ObjectId.
"""
from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Any, Dict, List, Literal, Optional, Union

CombatStatus = Literal["pending", "accepted", "rejected"]

# A reference is either the raw id or, once populated, the referenced document
Ref = Union[str, Dict[str, Any], None]


class Gym(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    place: str = Field(..., min_length=1, max_length=255)
    price: float = Field(..., ge=0, description="Price for using the gym")
    email: EmailStr
    phone: str = Field(..., min_length=3, max_length=40)
    password: str = Field(..., min_length=6, max_length=72)


class GymUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    place: Optional[str] = Field(None, min_length=1, max_length=255)
    price: Optional[float] = Field(None, ge=0)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=3, max_length=40)
    password: Optional[str] = Field(None, min_length=6, max_length=72)


class Combat(BaseModel):
    creator: str = Field(..., description="User id of the challenger")
    opponent: str = Field(..., description="User id of the challenged user")
    gym: str = Field(..., description="Gym id where the combat takes place")
    date: Optional[datetime] = None
    is_hidden: bool = False


class CombatUpdate(BaseModel):
    # status only changes through respond_to_combat_invitation
    creator: Optional[str] = None
    opponent: Optional[str] = None
    gym: Optional[str] = None
    date: Optional[datetime] = None


class CombatResponse(BaseModel):
    user_id: str
    status: str


class Rating(BaseModel):
    combat: str
    from_user: str
    to_user: str
    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class Visibility(BaseModel):
    is_hidden: bool


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


# Response models (lightweight)
class GymPublic(BaseModel):
    id: str
    name: str
    place: str
    price: float
    email: str
    phone: str
    is_hidden: bool = False


class GymPage(BaseModel):
    gyms: List[GymPublic]
    total_gyms: int
    total_pages: int
    current_page: int
    page_size: int


class CombatPublic(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    creator: Ref
    opponent: Ref
    gym: Ref
    status: CombatStatus
    is_hidden: bool = False
    date: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CombatPage(BaseModel):
    combats: List[CombatPublic]
    total_combats: int
    total_pages: int
    current_page: int
    page_size: int


class RatingPublic(BaseModel):
    id: str
    combat: str
    from_user: str
    to_user: str
    score: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class RatingList(BaseModel):
    ratings: List[RatingPublic]
    count: int
    average_score: Optional[float] = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class AccessToken(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
