"""Request and response models for the interactions API."""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from app.models.user import UserType


class InteractionRequest(BaseModel):
    target_user_id: int = Field(gt=0)


class LikeResponse(BaseModel):
    is_match: bool
    chat_id: Optional[int] = None
    target_user_id: int
    target_type: UserType


class BotMatchResponse(BaseModel):
    is_match: bool = True
    is_new_match: bool
    chat_id: Optional[int] = None
    target_user_id: int
    target_type: UserType = UserType.BOT


class RejectResponse(BaseModel):
    pass


class MatchedUser(BaseModel):
    id: int
    username: str
    type: UserType
    avatar: Optional[str] = None

    model_config = {"from_attributes": True}


class MatchListItem(BaseModel):
    user: MatchedUser
    matched_at: Optional[datetime] = None
    chat_id: Optional[int] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total_items: int
    total_pages: int


class MatchListResponse(BaseModel):
    matches: list[MatchListItem]
    pagination: Pagination
