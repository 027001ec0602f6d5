from __future__ import annotations

import asyncio
import logging
from typing import Any

from novelnest.core.context import AppContext
from novelnest.core.errors import AuthRequired, NovelNestError, ValidationError
from novelnest.schemas.catalog import (
    ALL_GENRES,
    BROWSE_GENRES,
    Book,
    BookStatus,
    CatalogEntry,
    CatalogQuery,
    RatingSummary,
    SortKey,
)
from novelnest.services.backend import BackendClient, TableQuery
from novelnest.views.library import BookmarkSet
from novelnest.views.loader import IncrementalLoader, Page

logger = logging.getLogger(__name__)

CATALOG_SELECT = "*, reviews(rating)"
SEARCH_COLUMNS = ("title", "author")

# sort key -> (column, descending, nulls last)
_SORTS: dict[SortKey, tuple[str, bool, bool]] = {
    SortKey.NEWEST: ("created_at", True, False),
    SortKey.OLDEST: ("created_at", False, False),
    SortKey.TOP_RATED: ("avg_rating", True, True),
    SortKey.ALPHABETICAL: ("title", False, False),
}


def build_catalog_query(
    backend: BackendClient,
    query: CatalogQuery,
    *,
    page_index: int,
    page_size: int,
) -> TableQuery:
    stmt = backend.table("novels").select(CATALOG_SELECT).eq("status", BookStatus.PUBLISHED.value)

    term = query.search_term.strip()
    if term:
        stmt = stmt.ilike_any(SEARCH_COLUMNS, term)
    if query.genre and query.genre != ALL_GENRES:
        stmt = stmt.eq("genre", query.genre)

    column, desc, nulls_last = _SORTS[query.sort_key]
    stmt = stmt.order(column, desc=desc, nulls_last=nulls_last)

    start = page_index * page_size
    return stmt.range(start, start + page_size - 1)


def to_entry(row: dict[str, Any]) -> CatalogEntry:
    reviews = row.get("reviews") or []
    ratings = [
        int(r["rating"])
        for r in reviews
        if isinstance(r, dict) and isinstance(r.get("rating"), (int, float))
    ]
    return CatalogEntry(book=Book.model_validate(row), rating=RatingSummary.from_ratings(ratings))


async def fetch_catalog_page(
    backend: BackendClient,
    query: CatalogQuery,
    *,
    page_index: int,
    page_size: int,
) -> Page[CatalogEntry]:
    rows = await build_catalog_query(backend, query, page_index=page_index, page_size=page_size).execute()
    out: list[CatalogEntry] = []
    for row in rows:
        try:
            out.append(to_entry(row))
        except ValueError:
            logger.warning("Skipping malformed catalog row id=%s", row.get("id"))
    return Page(out, len(rows))


class CatalogBrowser:
    """Browse view: filtered, sorted, incrementally loaded catalog plus bookmark state."""

    def __init__(self, ctx: AppContext, *, query: CatalogQuery | None = None) -> None:
        self.ctx = ctx
        self.query = query or CatalogQuery()
        self.search_text = self.query.search_term
        self.bookmarks = BookmarkSet(ctx)
        self._debounce: asyncio.Task[None] | None = None
        self._loader: IncrementalLoader[CatalogEntry] = IncrementalLoader(
            self._fetch,
            page_size=ctx.settings.catalog_page_size,
            on_error=self._on_error,
        )

    @property
    def entries(self) -> list[CatalogEntry]:
        return self._loader.items

    @property
    def has_more(self) -> bool:
        return self._loader.has_more

    @property
    def loading(self) -> bool:
        return self._loader.loading

    def _on_error(self, exc: NovelNestError) -> None:
        self.ctx.notifier.error("Could not load books. Please try again.")

    async def _fetch(self, offset: int, limit: int) -> Page[CatalogEntry]:
        return await fetch_catalog_page(
            self.ctx.backend,
            self.query,
            page_index=offset // limit,
            page_size=limit,
        )

    async def open(self) -> None:
        await self.refresh()
        if self.ctx.session is not None:
            await self.bookmarks.load()

    async def refresh(self) -> list[CatalogEntry]:
        return await self._loader.reload()

    async def load_more(self) -> list[CatalogEntry]:
        return await self._loader.load_more()

    async def set_query(self, query: CatalogQuery) -> bool:
        if query == self.query:
            return False
        self.query = query
        await self.refresh()
        return True

    async def set_genre(self, genre: str) -> bool:
        genre = genre or ALL_GENRES
        if genre not in BROWSE_GENRES:
            raise ValidationError(f"Unknown genre {genre!r}")
        return await self.set_query(self.query.with_changes(genre=genre))

    async def set_sort(self, sort_key: SortKey | str) -> bool:
        return await self.set_query(self.query.with_changes(sort_key=SortKey(sort_key)))

    def search(self, term: str) -> asyncio.Task[None]:
        """Debounced search: only the last term typed within the window is queried."""
        self.search_text = term
        self._cancel_debounce()
        self._debounce = asyncio.get_running_loop().create_task(self._debounced_search(term))
        return self._debounce

    async def _debounced_search(self, term: str) -> None:
        await asyncio.sleep(self.ctx.settings.search_debounce_seconds)
        await self.set_query(self.query.with_changes(search_term=term.strip()))

    async def settle(self) -> None:
        task = self._debounce
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _cancel_debounce(self) -> None:
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = None

    def is_bookmarked(self, book_id: Any) -> bool:
        return book_id in self.bookmarks

    async def toggle_bookmark(self, book_id: Any) -> bool | None:
        before = book_id in self.bookmarks
        try:
            member = await self.bookmarks.toggle(book_id)
        except AuthRequired as exc:
            self.ctx.notifier.error(exc.message)
            return None
        if member == before:
            return member
        self.ctx.notifier.success("Added to Library" if member else "Removed from Library")
        return member

    def close(self) -> None:
        self._cancel_debounce()
