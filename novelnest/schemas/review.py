from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from novelnest.schemas.profile import ReviewerOut


class FlagOutcome(str, Enum):
    REPORTED = "reported"
    ALREADY_REPORTED = "already_reported"
    FAILED = "failed"


class Review(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    book_id: int | str
    user_id: str
    rating: int = Field(ge=1, le=5)
    comment: str = ""
    created_at: datetime | None = None
    reviewer: ReviewerOut | None = None
    like_count: int = 0
    book_title: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_embeds(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "profiles" in data and "reviewer" not in data:
            data["reviewer"] = data.pop("profiles")
        likes = data.pop("review_likes", None)
        if isinstance(likes, list) and "like_count" not in data:
            if likes and isinstance(likes[0], dict) and "count" in likes[0]:
                data["like_count"] = int(likes[0]["count"] or 0)
            else:
                data["like_count"] = len(likes)
        novel = data.pop("novels", None)
        if isinstance(novel, dict) and "book_title" not in data:
            data["book_title"] = novel.get("title")
        return data


class FlaggedReview(BaseModel):
    review: Review
    flag_count: int
    last_flagged_at: datetime | None = None
