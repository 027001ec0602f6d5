from __future__ import annotations

import asyncio
import logging
from typing import Any, TypeVar

from pydantic import BaseModel

from novelnest.core.context import AppContext
from novelnest.core.errors import NotFound, NovelNestError, ValidationError
from novelnest.schemas.catalog import ALL_GENRES, GENRE_OPTIONS, Book, BookDraft, BookStatus, LibraryStats
from novelnest.schemas.profile import Profile, Role
from novelnest.schemas.request import AccessStatus, AdminAccessRequest, BookRequest, RequestStatus
from novelnest.schemas.review import FlaggedReview, Review
from novelnest.services.auth import Capability, can, require_capability
from novelnest.services.backend import TableQuery, contains_pattern
from novelnest.services.storage import Upload, timestamped_name
from novelnest.views.deps import parse_rows, require_session
from novelnest.views.reviews import delete_review

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

FLAG_SELECT = "review_id, created_at, reviews(*, profiles(nickname, full_name, avatar_url))"
AUTHOR_REQUEST_SELECT = "*, profiles!admin_requests_user_id_fkey(email)"


class AdminConsole:
    """Publishing workflow and moderation, gated by the signed-in user's role."""

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self.role = Role.USER
        self.published: list[Book] = []
        self._search: asyncio.Task[None] | None = None

    @property
    def has_access(self) -> bool:
        return can(self.role, Capability.SUBMIT_BOOKS)

    def can(self, capability: Capability) -> bool:
        return can(self.role, capability)

    def _require(self, capability: Capability) -> str:
        session = require_session(self.ctx)
        require_capability(self.role, capability)
        return session.user_id

    async def load(self) -> Role:
        session = require_session(self.ctx)
        try:
            row = await self.ctx.backend.table("profiles").select("role").eq("id", session.user_id).maybe_single()
        except NovelNestError as exc:
            logger.error("Role lookup for %s failed: %s", session.user_id, exc)
            row = None
        self.role = Role.parse(row.get("role") if row else None)
        logger.info("Admin console opened by %s as %s", session.user_id, self.role.value)
        return self.role

    async def _list(self, model: type[ModelT], stmt: TableQuery, what: str) -> list[ModelT]:
        try:
            rows = await stmt.execute()
        except NovelNestError as exc:
            logger.error("Fetching %s failed: %s", what, exc)
            self.ctx.notifier.error(f"Could not load {what}")
            return []
        return parse_rows(model, rows)

    async def _write(self, stmt: Any, success: str, failure: str) -> bool:
        try:
            await stmt
        except NovelNestError as exc:
            logger.error("%s: %s", failure, exc)
            self.ctx.notifier.error(failure)
            return False
        if success:
            self.ctx.notifier.success(success)
        return True

    async def stats(self) -> LibraryStats:
        self._require(Capability.VIEW_STATS)
        backend = self.ctx.backend
        try:
            users, books, reviews = await asyncio.gather(
                backend.table("profiles").count(),
                backend.table("novels").count(),
                backend.table("reviews").count(),
            )
        except NovelNestError as exc:
            logger.error("Stats fetch failed: %s", exc)
            self.ctx.notifier.error("Could not load stats")
            return LibraryStats()
        return LibraryStats(users=users, books=books, reviews=reviews)

    # books

    async def my_books(self) -> list[Book]:
        user_id = self._require(Capability.SUBMIT_BOOKS)
        stmt = self.ctx.backend.table("novels").select("*").eq("owner_id", user_id).order("created_at", desc=True)
        return await self._list(Book, stmt, "your books")

    async def _books_with_status(self, status: BookStatus) -> list[Book]:
        self._require(Capability.REVIEW_SUBMISSIONS)
        stmt = self.ctx.backend.table("novels").select("*").eq("status", status.value).order("created_at", desc=True)
        return await self._list(Book, stmt, f"{status.value} books")

    async def pending_books(self) -> list[Book]:
        return await self._books_with_status(BookStatus.PENDING)

    async def rejected_books(self) -> list[Book]:
        return await self._books_with_status(BookStatus.REJECTED)

    async def published_books(self, search: str = "", genre: str = ALL_GENRES) -> list[Book]:
        self._require(Capability.REVIEW_SUBMISSIONS)
        stmt = (
            self.ctx.backend.table("novels")
            .select("*")
            .eq("status", BookStatus.PUBLISHED.value)
            .order("created_at", desc=True)
        )
        if search.strip():
            stmt = stmt.ilike_any(("title", "author"), search)
        if genre and genre != ALL_GENRES:
            stmt = stmt.ilike("genre", contains_pattern(genre))
        self.published = await self._list(Book, stmt, "published books")
        return self.published

    def search_published(self, search: str, genre: str = ALL_GENRES) -> asyncio.Task[None]:
        self._require(Capability.REVIEW_SUBMISSIONS)
        if self._search is not None and not self._search.done():
            self._search.cancel()

        async def run() -> None:
            await asyncio.sleep(self.ctx.settings.search_debounce_seconds)
            await self.published_books(search, genre)

        self._search = asyncio.get_running_loop().create_task(run())
        return self._search

    async def _upload(self, bucket: str, upload: Upload | None) -> str | None:
        if upload is None:
            return None
        return await self.ctx.storage.upload(bucket, timestamped_name(upload.filename), upload)

    async def save_book(
        self,
        draft: BookDraft,
        *,
        cover: Upload | None = None,
        pdf: Upload | None = None,
        book_id: Any = None,
    ) -> Book | None:
        user_id = self._require(Capability.SUBMIT_BOOKS)
        if not draft.title.strip() or not draft.author.strip():
            raise ValidationError("Title and author are required")
        if draft.series_order is not None and draft.series_order < 1:
            raise ValidationError("Series order starts at 1")
        unknown = [g for g in draft.genres if g not in GENRE_OPTIONS]
        if unknown:
            raise ValidationError(f"Unknown genres: {', '.join(unknown)}")

        settings = self.ctx.settings
        try:
            cover_url = await self._upload(settings.covers_bucket, cover)
            pdf_url = await self._upload(settings.pdfs_bucket, pdf)
            row = draft.as_row()
            if cover_url:
                row["cover_url"] = cover_url
            if pdf_url:
                row["pdf_url"] = pdf_url

            table = self.ctx.backend.table("novels")
            if book_id is not None:
                stmt = table.eq("id", book_id)
                if not self.can(Capability.REVIEW_SUBMISSIONS):
                    stmt = stmt.eq("owner_id", user_id)
                rows = await stmt.update(row)
                if not rows:
                    raise NotFound(f"Book {book_id} is not editable")
                message = "Book Updated!"
            else:
                direct = self.can(Capability.PUBLISH_DIRECTLY)
                row["owner_id"] = user_id
                row["status"] = (BookStatus.PUBLISHED if direct else BookStatus.PENDING).value
                rows = await table.insert(row)
                message = "Book Published!" if direct else "Submitted for Review"
        except NovelNestError as exc:
            logger.error("Saving book %r failed: %s", draft.title, exc)
            self.ctx.notifier.error(f"Error: {exc.message}")
            return None

        self.ctx.notifier.success(message)
        saved = parse_rows(Book, rows)
        return saved[0] if saved else None

    async def set_book_status(self, book_id: Any, status: BookStatus) -> bool:
        self._require(Capability.REVIEW_SUBMISSIONS)
        stmt = self.ctx.backend.table("novels").eq("id", book_id).update({"status": status.value})
        return await self._write(stmt, f"Book {status.value}", "Could not update the book")

    async def delete_book(self, book_id: Any) -> bool:
        user_id = self._require(Capability.SUBMIT_BOOKS)
        stmt = self.ctx.backend.table("novels").eq("id", book_id)
        if not self.can(Capability.REVIEW_SUBMISSIONS):
            stmt = stmt.eq("owner_id", user_id)
        return await self._write(stmt.delete(), "Book deleted", "Could not delete the book")

    # requests and authors

    async def book_requests(self) -> list[BookRequest]:
        self._require(Capability.MANAGE_REQUESTS)
        stmt = (
            self.ctx.backend.table("book_requests")
            .select("*, profiles(nickname)")
            .eq("status", RequestStatus.PENDING.value)
            .order("created_at", desc=True)
        )
        return await self._list(BookRequest, stmt, "book requests")

    async def resolve_book_request(self, request_id: Any, status: RequestStatus) -> bool:
        self._require(Capability.MANAGE_REQUESTS)
        stmt = self.ctx.backend.table("book_requests").eq("id", request_id).update({"status": status.value})
        return await self._write(stmt, f"Request {status.value}", "Could not update the request")

    async def author_requests(self) -> list[AdminAccessRequest]:
        self._require(Capability.MANAGE_AUTHORS)
        stmt = (
            self.ctx.backend.table("admin_requests")
            .select(AUTHOR_REQUEST_SELECT)
            .eq("status", AccessStatus.PENDING.value)
        )
        return await self._list(AdminAccessRequest, stmt, "author requests")

    async def resolve_author_request(self, request_id: Any, user_id: str, *, approve: bool) -> bool:
        self._require(Capability.MANAGE_AUTHORS)
        status = AccessStatus.APPROVED if approve else AccessStatus.REJECTED
        backend = self.ctx.backend
        try:
            if approve:
                await backend.table("profiles").eq("id", user_id).update({"role": Role.AUTHOR.value})
            await backend.table("admin_requests").eq("id", request_id).update({"status": status.value})
        except NovelNestError as exc:
            logger.error("Resolving author request %s failed: %s", request_id, exc)
            self.ctx.notifier.error("Could not update the request")
            return False
        self.ctx.notifier.success(f"User {status.value}")
        return True

    async def active_authors(self) -> list[Profile]:
        self._require(Capability.MANAGE_AUTHORS)
        stmt = self.ctx.backend.table("profiles").select("*").eq("role", Role.AUTHOR.value)
        return await self._list(Profile, stmt, "authors")

    async def revoke_author(self, user_id: str) -> bool:
        self._require(Capability.MANAGE_AUTHORS)
        backend = self.ctx.backend
        try:
            await backend.table("profiles").eq("id", user_id).update({"role": Role.USER.value})
            await backend.table("admin_requests").eq("user_id", user_id).update({"status": AccessStatus.REJECTED.value})
        except NovelNestError as exc:
            logger.error("Revoking author %s failed: %s", user_id, exc)
            self.ctx.notifier.error("Could not revoke access")
            return False
        self.ctx.notifier.success("Access revoked")
        return True

    # moderation

    async def flagged_reviews(self) -> list[FlaggedReview]:
        self._require(Capability.MODERATE_REVIEWS)
        try:
            rows = await (
                self.ctx.backend.table("review_flags")
                .select(FLAG_SELECT)
                .order("created_at", desc=True)
                .execute()
            )
        except NovelNestError as exc:
            logger.error("Fetching flagged reviews failed: %s", exc)
            self.ctx.notifier.error("Could not load flagged reviews")
            return []

        grouped: dict[str, FlaggedReview] = {}
        for row in rows:
            embedded = row.get("reviews")
            if not isinstance(embedded, dict):
                continue
            key = str(row.get("review_id"))
            entry = grouped.get(key)
            if entry is None:
                reviews = parse_rows(Review, [embedded])
                if not reviews:
                    continue
                grouped[key] = FlaggedReview(review=reviews[0], flag_count=1, last_flagged_at=row.get("created_at"))
            else:
                entry.flag_count += 1
        return sorted(grouped.values(), key=lambda f: f.flag_count, reverse=True)

    async def dismiss_flags(self, review_id: Any) -> bool:
        self._require(Capability.MODERATE_REVIEWS)
        stmt = self.ctx.backend.table("review_flags").eq("review_id", review_id).delete()
        return await self._write(stmt, "Flags dismissed", "Could not dismiss the flags")

    async def remove_review(self, review_id: Any) -> bool:
        self._require(Capability.MODERATE_REVIEWS)
        if not await delete_review(self.ctx, review_id):
            return False
        self.ctx.notifier.success("Review removed")
        return True
