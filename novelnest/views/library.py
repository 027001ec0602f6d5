from __future__ import annotations

import logging
from typing import Any

from novelnest.core.context import AppContext
from novelnest.core.errors import ConflictError, NovelNestError
from novelnest.schemas.catalog import Book
from novelnest.schemas.reading import InProgressBook, ReadingProgress
from novelnest.views.deps import parse_rows, require_session
from novelnest.views.loader import IncrementalLoader, Page

logger = logging.getLogger(__name__)


def _key(book_id: Any) -> str:
    return str(book_id)


class BookmarkSet:
    """Ids of the books in the signed-in user's library.

    Toggles are optimistic: membership flips locally first, then the
    ``bookmarks`` row is inserted or deleted. A duplicate insert counts as
    success; any other failure reverts the flip and notifies.
    """

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self._ids: set[str] = set()
        self.loaded = False

    def __contains__(self, book_id: object) -> bool:
        return _key(book_id) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def discard(self, book_id: Any) -> None:
        self._ids.discard(_key(book_id))

    async def load(self) -> None:
        session = self.ctx.session
        if session is None:
            self._ids = set()
            self.loaded = False
            return
        try:
            rows = await self.ctx.backend.table("bookmarks").select("book_id").eq("user_id", session.user_id).execute()
        except NovelNestError as exc:
            logger.error("Bookmark fetch failed for %s: %s", session.user_id, exc)
            self.ctx.notifier.error("Could not load your library")
            return
        self._ids = {_key(r.get("book_id")) for r in rows if r.get("book_id") is not None}
        self.loaded = True

    async def toggle(self, book_id: Any) -> bool:
        session = require_session(self.ctx, "Please login to library!")
        key = _key(book_id)
        was_member = key in self._ids
        if was_member:
            self._ids.discard(key)
        else:
            self._ids.add(key)

        table = self.ctx.backend.table("bookmarks")
        try:
            if was_member:
                await table.eq("user_id", session.user_id).eq("book_id", book_id).delete()
            else:
                await table.insert({"user_id": session.user_id, "book_id": book_id})
        except ConflictError:
            logger.debug("Bookmark %s already present for %s", key, session.user_id)
        except NovelNestError as exc:
            logger.error("Bookmark toggle failed for book %s: %s", key, exc)
            if was_member:
                self._ids.add(key)
            else:
                self._ids.discard(key)
            self.ctx.notifier.error("Could not update your library")
            return was_member
        return not was_member


class LibraryView:
    """The signed-in user's library: bookmarked books and the "continue reading" shelf."""

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self.bookmarks = BookmarkSet(ctx)
        self.in_progress: list[InProgressBook] = []
        self._loader: IncrementalLoader[Book] = IncrementalLoader(
            self._fetch_books,
            page_size=ctx.settings.library_page_size,
            on_error=lambda exc: ctx.notifier.error("Could not load your library"),
        )

    @property
    def books(self) -> list[Book]:
        return self._loader.items

    @property
    def has_more(self) -> bool:
        return self._loader.has_more

    async def load(self) -> None:
        require_session(self.ctx)
        await self.bookmarks.load()
        await self._loader.reload()
        await self._load_in_progress()

    async def load_more(self) -> list[Book]:
        return await self._loader.load_more()

    async def _fetch_books(self, offset: int, limit: int) -> Page[Book]:
        session = require_session(self.ctx)
        rows = await (
            self.ctx.backend.table("bookmarks")
            .select("book_id, created_at, novels(*)")
            .eq("user_id", session.user_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        # bookmarks whose book was deleted embed a null novel
        books = parse_rows(Book, (r["novels"] for r in rows if isinstance(r.get("novels"), dict)))
        return Page(books, len(rows))

    async def _load_in_progress(self) -> None:
        session = require_session(self.ctx)
        try:
            rows = await (
                self.ctx.backend.table("reading_progress")
                .select("user_id, book_id, current_page, total_pages, last_read, novels(*)")
                .eq("user_id", session.user_id)
                .gt("current_page", 1)
                .order("last_read", desc=True)
                .execute()
            )
        except NovelNestError as exc:
            logger.error("Reading progress fetch failed: %s", exc)
            self.in_progress = []
            return

        shelf: list[InProgressBook] = []
        for row in rows:
            novel = row.get("novels")
            if not isinstance(novel, dict):
                continue
            books = parse_rows(Book, [novel])
            progress = parse_rows(ReadingProgress, [row])
            if books and progress:
                shelf.append(InProgressBook(book=books[0], progress=progress[0]))
        self.in_progress = shelf

    async def remove(self, book_id: Any) -> bool:
        session = require_session(self.ctx)
        try:
            await (
                self.ctx.backend.table("bookmarks")
                .eq("user_id", session.user_id)
                .eq("book_id", book_id)
                .delete()
            )
        except NovelNestError as exc:
            logger.error("Removing book %s from library failed: %s", book_id, exc)
            self.ctx.notifier.error("Could not remove the book")
            return False

        key = _key(book_id)
        self._loader.remove(lambda b: _key(b.id) == key)
        self.bookmarks.discard(book_id)
        self.ctx.notifier.success("Removed")
        return True
