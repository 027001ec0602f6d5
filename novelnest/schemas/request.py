from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class RequestStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    REJECTED = "rejected"
    COMPLETED = "completed"


class AccessStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BookRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    user_id: str
    title: str
    author: str = ""
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime | None = None
    requester_nickname: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_requester(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("profiles"), dict):
            data = dict(data)
            data["requester_nickname"] = data.pop("profiles").get("nickname")
        return data


class AdminAccessRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    user_id: str
    status: AccessStatus = AccessStatus.PENDING
    created_at: datetime | None = None
    email: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_profile(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("profiles"), dict):
            data = dict(data)
            data["email"] = data.pop("profiles").get("email")
        return data
