from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from novelnest.core.context import AppContext
from novelnest.core.errors import AuthRequired, NotFound, NovelNestError
from novelnest.schemas.catalog import Book, BookStatus
from novelnest.views.deps import parse_rows, require_session
from novelnest.views.library import BookmarkSet
from novelnest.views.reader import Document, ReadingSession
from novelnest.views.reviews import ReviewThread

logger = logging.getLogger(__name__)

SERIES_SELECT = "id, title, cover_url, series_order, series_name, author, status"
RELATED_SELECT = "id, title, cover_url, author, status"


class ReadAction(str, Enum):
    LOGIN = "login"
    START = "start"
    CONTINUE = "continue"


class BookDetailView:
    def __init__(self, ctx: AppContext, *, book_id: Any) -> None:
        self.ctx = ctx
        self.book_id = book_id
        self.book: Book | None = None
        self.not_found = False
        self.loading = False
        self.series_books: list[Book] = []
        self.related_books: list[Book] = []
        self.saved_page = 1
        self.bookmarks = BookmarkSet(ctx)
        self.reviews = ReviewThread(ctx, book_id=book_id)
        self.reader: ReadingSession | None = None

    @property
    def is_bookmarked(self) -> bool:
        return self.book_id in self.bookmarks

    @property
    def read_action(self) -> ReadAction:
        if self.ctx.session is None:
            return ReadAction.LOGIN
        return ReadAction.CONTINUE if self.saved_page > 1 else ReadAction.START

    @property
    def read_label(self) -> str:
        action = self.read_action
        if action is ReadAction.LOGIN:
            return "Login to Read"
        if action is ReadAction.CONTINUE:
            return f"Continue (Page {self.saved_page})"
        return "Start Reading"

    async def load(self) -> Book | None:
        self.loading = True
        try:
            row = await self.ctx.backend.table("novels").select("*").eq("id", self.book_id).maybe_single()
        except NovelNestError as exc:
            logger.error("Loading book %s failed: %s", self.book_id, exc)
            self.ctx.notifier.error("Could not load this book")
            self.loading = False
            return None

        if row is None:
            self.book = None
            self.not_found = True
            self.loading = False
            return None

        self.not_found = False
        self.book = Book.model_validate(row)
        self.series_books = await self._series_books(self.book)
        self.related_books = await self._related_books(self.book)
        await self.reviews.load()
        await self._load_user_state()
        self.loading = False
        return self.book

    async def _series_books(self, book: Book) -> list[Book]:
        if not book.series_name:
            return []
        try:
            rows = await (
                self.ctx.backend.table("novels")
                .select(SERIES_SELECT)
                .eq("series_name", book.series_name)
                .eq("status", BookStatus.PUBLISHED.value)
                .neq("id", book.id)
                .order("series_order")
                .execute()
            )
        except NovelNestError as exc:
            logger.error("Series lookup for %s failed: %s", book.series_name, exc)
            return []
        return parse_rows(Book, rows)

    async def _related_books(self, book: Book) -> list[Book]:
        if not book.genre:
            return []
        try:
            rows = await (
                self.ctx.backend.table("novels")
                .select(RELATED_SELECT)
                .eq("genre", book.genre)
                .eq("status", BookStatus.PUBLISHED.value)
                .neq("id", book.id)
                .limit(self.ctx.settings.related_books_limit)
                .execute()
            )
        except NovelNestError as exc:
            logger.error("Related books lookup for %s failed: %s", book.id, exc)
            return []
        return parse_rows(Book, rows)

    async def _load_user_state(self) -> None:
        session = self.ctx.session
        self.saved_page = 1
        if session is None:
            self.bookmarks = BookmarkSet(self.ctx)
            return
        await self.bookmarks.load()
        try:
            progress = await (
                self.ctx.backend.table("reading_progress")
                .select("current_page, total_pages")
                .eq("user_id", session.user_id)
                .eq("book_id", self.book_id)
                .maybe_single()
            )
        except NovelNestError as exc:
            logger.error("Progress lookup for book %s failed: %s", self.book_id, exc)
            return
        if progress and isinstance(progress.get("current_page"), int):
            self.saved_page = max(1, progress["current_page"])

    def open_reader(self, document: Document | None = None) -> ReadingSession:
        require_session(self.ctx, "Login to Read")
        if self.book is None:
            raise NotFound(f"Book {self.book_id} is not loaded")
        self.reader = ReadingSession(self.ctx, book_id=self.book.id, on_close=self._reconcile)
        self.reader.open(document, initial_page=self.saved_page)
        return self.reader

    async def _reconcile(self) -> None:
        await self.load()

    async def close_reader(self) -> None:
        reader, self.reader = self.reader, None
        if reader is not None:
            await reader.close()

    async def toggle_bookmark(self) -> bool | None:
        before = self.is_bookmarked
        try:
            member = await self.bookmarks.toggle(self.book_id)
        except AuthRequired as exc:
            self.ctx.notifier.error(exc.message)
            return None
        if member != before:
            self.ctx.notifier.success("Added to Library" if member else "Removed from Library")
        return member

    def share_link(self) -> str:
        link = self.ctx.settings.book_url(self.book_id)
        self.ctx.notifier.success("Link copied!")
        return link
