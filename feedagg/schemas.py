from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class FeedCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value


class FollowCreate(BaseModel):
    feed_id: str = Field(min_length=1)


class _OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserOut(_OrmModel):
    id: str
    name: str
    api_key: str
    created_at: datetime
    updated_at: datetime


class FeedOut(_OrmModel):
    id: str
    name: str
    url: str
    user_id: str
    last_fetched_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class FollowOut(_OrmModel):
    id: str
    user_id: str
    feed_id: str
    created_at: datetime
    updated_at: datetime


class PostOut(_OrmModel):
    id: str
    feed_id: str
    title: str
    url: str
    description: str | None = None
    published_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CreateFeedResponse(BaseModel):
    feed: FeedOut
    feed_follow: FollowOut


__all__ = [
    "CreateFeedResponse",
    "FeedCreate",
    "FeedOut",
    "FollowCreate",
    "FollowOut",
    "PostOut",
    "UserCreate",
    "UserOut",
]
