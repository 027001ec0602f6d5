from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class Role(str, Enum):
    USER = "user"
    AUTHOR = "author"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: object) -> Role:
        raw = str(value or "").strip().lower()
        for role in cls:
            if role.value == raw:
                return role
        return cls.USER


class Profile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    nickname: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    email: str | None = None
    role: Role = Role.USER
    date_of_birth: date | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: object) -> Role:
        return Role.parse(value)

    @property
    def display_name(self) -> str:
        return self.nickname or self.full_name or self.email or "Reader"


class ProfilePatch(BaseModel):
    nickname: str | None = None
    full_name: str | None = None
    date_of_birth: date | None = None


class ReviewerOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nickname: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        return self.nickname or self.full_name or "Anonymous"
