from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..core.schools import DEFAULT_SCHOOL_ID, is_valid_school_id, school_id_to_label

MAX_BODY_LENGTH = 560
MIN_BODY_LENGTH = 3


class FeedSort(str, Enum):
    NEW = "new"
    OLD = "old"
    TOP = "top"


class ConfessionModel(BaseModel):
    id: str
    created_at: datetime
    body: str
    school_id: str = DEFAULT_SCHOOL_ID
    views: int = 0
    likes: int = 0
    liked: bool = False

    model_config = ConfigDict(from_attributes=True)

    @computed_field(return_type=str)
    def school_label(self) -> str:
        return school_id_to_label(self.school_id)


class ConfessionCreate(BaseModel):
    body: str
    school_id: str = DEFAULT_SCHOOL_ID

    @field_validator("body")
    @classmethod
    def _validate_body(cls, value: str) -> str:
        trimmed = value.strip()
        if len(trimmed) < MIN_BODY_LENGTH:
            raise ValueError("Write at least a couple words.")
        if len(trimmed) > MAX_BODY_LENGTH:
            raise ValueError("That confession is a bit long. Try trimming it down.")
        return trimmed

    @field_validator("school_id")
    @classmethod
    def _validate_school(cls, value: str) -> str:
        if not is_valid_school_id(value):
            raise ValueError("unknown school tag")
        return value


class FeedPage(BaseModel):
    items: list[ConfessionModel]
    has_more: bool
    next_offset: int | None = None


class LikeState(BaseModel):
    id: str
    liked: bool
    likes: int = Field(ge=0)


class SchoolTagModel(BaseModel):
    id: str
    label: str
    model_config = ConfigDict(from_attributes=True)


class AnonymousSession(BaseModel):
    user_id: str
    access_token: str | None = None


class SessionResponse(BaseModel):
    ok: bool = True
    user_id: str
