from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from novelnest.schemas.catalog import Book


class ReaderState(str, Enum):
    CLOSED = "closed"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class ReadingProgress(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    book_id: int | str
    current_page: int = 1
    total_pages: int | None = None
    last_read: datetime | None = None

    @property
    def percent(self) -> int | None:
        if not self.total_pages:
            return None
        return max(0, min(100, round(self.current_page * 100 / self.total_pages)))


class InProgressBook(BaseModel):
    book: Book
    progress: ReadingProgress
