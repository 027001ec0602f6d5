from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

BROWSE_GENRES = ["All", "Fantasy", "Romance", "Thriller", "Sci-Fi", "Mystery", "Horror"]
GENRE_OPTIONS = [
    "Fantasy",
    "Romance",
    "Thriller",
    "Sci-Fi",
    "Mystery",
    "Horror",
    "Dark Romance",
    "Adventure",
    "Non-fiction",
    "History",
]
ALL_GENRES = "All"
GENRE_SEPARATOR = ", "
NO_RATING_LABEL = "New"


class BookStatus(str, Enum):
    PENDING = "pending"
    PUBLISHED = "published"
    REJECTED = "rejected"


class SortKey(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    TOP_RATED = "top_rated"
    ALPHABETICAL = "alphabetical"


class Book(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | str
    title: str
    author: str = ""
    genre: str | None = None
    cover_url: str | None = None
    pdf_url: str | None = None
    synopsis: str = ""
    series_name: str | None = None
    series_order: int | None = None
    status: BookStatus = BookStatus.PENDING
    owner_id: str | None = None
    created_at: datetime | None = None

    @property
    def genres(self) -> list[str]:
        return split_genres(self.genre)

    @property
    def series_label(self) -> str | None:
        if not self.series_name:
            return None
        if self.series_order is None:
            return self.series_name
        return f"{self.series_name} #{self.series_order}"


class RatingSummary(BaseModel):
    """Client-side rating aggregate; ``average`` is None when nobody rated yet."""

    average: float | None = None
    count: int = 0

    @property
    def label(self) -> str:
        if self.average is None:
            return NO_RATING_LABEL
        return f"{self.average:.1f}"

    @classmethod
    def from_ratings(cls, ratings: list[int]) -> RatingSummary:
        if not ratings:
            return cls(average=None, count=0)
        return cls(average=round(sum(ratings) / len(ratings), 1), count=len(ratings))


class LibraryStats(BaseModel):
    users: int = 0
    books: int = 0
    reviews: int = 0


class CatalogEntry(BaseModel):
    book: Book
    rating: RatingSummary


class CatalogQuery(BaseModel):
    """Everything that selects catalog rows; any change restarts paging at 0."""

    model_config = ConfigDict(frozen=True)

    search_term: str = ""
    genre: str = ALL_GENRES
    sort_key: SortKey = SortKey.NEWEST

    def with_changes(self, **changes: Any) -> CatalogQuery:
        return self.model_copy(update=changes)


class BookDraft(BaseModel):
    title: str
    author: str
    genres: list[str] = Field(default_factory=list)
    series_name: str | None = None
    series_order: int | None = None
    synopsis: str = ""

    def as_row(self) -> dict[str, Any]:
        return {
            "title": self.title.strip(),
            "author": self.author.strip(),
            "genre": join_genres(self.genres),
            "series_name": (self.series_name or "").strip() or None,
            "series_order": self.series_order if (self.series_name or "").strip() else None,
            "synopsis": self.synopsis or "",
        }


def split_genres(value: str | None) -> list[str]:
    return [g.strip() for g in (value or "").split(",") if g.strip()]


def join_genres(genres: list[str]) -> str:
    return GENRE_SEPARATOR.join(g.strip() for g in genres if g.strip())
