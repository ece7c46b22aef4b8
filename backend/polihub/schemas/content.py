from typing import Literal

from pydantic import BaseModel, Field


class PostCreate(BaseModel):
    kind: Literal["post", "comment"] = "post"
    title: str | None = Field(default=None, max_length=200)
    body: str
    county: str | None = None
    parent_id: int | None = None


class FlagCreate(BaseModel):
    reason: str = Field(default="community_flag", max_length=64)


class FlagResolve(BaseModel):
    outcome: Literal["cleared", "upheld"]
    note: str | None = Field(default=None, max_length=255)


class StandingUpdate(BaseModel):
    standing: Literal["normal", "throttled", "blocked"]
    reason: str | None = Field(default=None, max_length=255)


class TrustEventCreate(BaseModel):
    user_uuid: str = Field(min_length=36, max_length=36)
    delta: int = Field(ge=-100, le=100)
    reason: str = Field(min_length=1, max_length=255)
    cause_ref: str | None = Field(default=None, max_length=64)
