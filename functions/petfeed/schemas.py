"""
Pydantic schemas for the pet feed API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from petfeed.cursor import Cursor, decode_cursor
from petfeed.store import (
    CAPTION_MAX,
    DEFAULT_LIMIT,
    DEFAULT_PET_TYPE,
    PET_NAME_MAX,
    PET_TYPE_MAX,
    SortOrder,
    clamp_limit,
    normalize_query,
    normalize_sort,
    safe_text,
)


class ListPostsQuery(BaseModel):
    """
    Feed query parameters. Bad values are normalized rather than rejected,
    and a malformed cursor simply means "start from the top".
    """

    limit: int = DEFAULT_LIMIT
    sort: SortOrder = "newest"
    q: str = ""
    cursor: Optional[Cursor] = None

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value):
        return DEFAULT_LIMIT if value is None else clamp_limit(value)

    @field_validator("sort", mode="before")
    @classmethod
    def _normalize_sort(cls, value):
        return normalize_sort(value)

    @field_validator("q", mode="before")
    @classmethod
    def _normalize_query(cls, value):
        return normalize_query(value)

    @field_validator("cursor", mode="before")
    @classmethod
    def _decode_cursor(cls, value):
        if isinstance(value, Cursor):
            return value
        return decode_cursor(value)


class NewPostFields(BaseModel):
    model_config = ConfigDict(validate_default=True)

    petName: str = ""
    petType: str = ""
    caption: str = ""

    @field_validator("petName", mode="before")
    @classmethod
    def _pet_name(cls, value):
        return safe_text(value, PET_NAME_MAX)

    @field_validator("petType", mode="before")
    @classmethod
    def _pet_type(cls, value):
        return safe_text(value, PET_TYPE_MAX) or DEFAULT_PET_TYPE

    @field_validator("caption", mode="before")
    @classmethod
    def _caption(cls, value):
        return safe_text(value, CAPTION_MAX)


class PostOut(BaseModel):
    id: str
    petName: str
    petType: str
    caption: str
    createdAt: int
    imageUrl: str


class ListPostsResponse(BaseModel):
    posts: list[PostOut]
    nextCursor: Optional[str] = None


class CreatePostResponse(BaseModel):
    post: PostOut


class OkResponse(BaseModel):
    ok: Literal[True] = True


class ErrorResponse(BaseModel):
    error: str
