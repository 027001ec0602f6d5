from __future__ import annotations

import logging
from typing import Any

from novelnest.core.context import AppContext
from novelnest.core.errors import ConflictError, NovelNestError, ValidationError
from novelnest.schemas.review import FlagOutcome, Review
from novelnest.views.deps import parse_rows, require_session
from novelnest.views.loader import IncrementalLoader, Page

logger = logging.getLogger(__name__)

REVIEW_SELECT = "*, profiles(nickname, full_name, avatar_url), review_likes(count)"
MIN_RATING = 1
MAX_RATING = 5


def _key(review_id: Any) -> str:
    return str(review_id)


def validate_review(rating: Any, comment: str) -> tuple[int, str]:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be a whole number of stars")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    text = (comment or "").strip()
    if not text:
        raise ValidationError("Write a few words about the book")
    return rating, text


async def delete_review(ctx: AppContext, review_id: Any) -> bool:
    try:
        await ctx.backend.table("reviews").eq("id", review_id).delete()
    except NovelNestError as exc:
        logger.error("Deleting review %s failed: %s", review_id, exc)
        ctx.notifier.error("Could not delete the review")
        return False
    return True


class ReviewThread:
    """Reviews of one book with like toggling, flagging and posting."""

    def __init__(self, ctx: AppContext, *, book_id: Any) -> None:
        self.ctx = ctx
        self.book_id = book_id
        self._liked: set[str] = set()
        self._loader: IncrementalLoader[Review] = IncrementalLoader(
            self._fetch,
            page_size=ctx.settings.reviews_page_size,
            on_error=lambda exc: ctx.notifier.error("Could not load reviews"),
        )

    @property
    def reviews(self) -> list[Review]:
        return self._loader.items

    @property
    def has_more(self) -> bool:
        return self._loader.has_more

    @property
    def liked(self) -> frozenset[str]:
        return frozenset(self._liked)

    def is_liked(self, review_id: Any) -> bool:
        return _key(review_id) in self._liked

    def like_count(self, review_id: Any) -> int:
        key = _key(review_id)
        for review in self._loader.items:
            if _key(review.id) == key:
                return review.like_count
        return 0

    async def load(self) -> list[Review]:
        return await self._loader.reload()

    async def load_more(self) -> list[Review]:
        return await self._loader.load_more()

    async def _fetch(self, offset: int, limit: int) -> Page[Review]:
        rows = await (
            self.ctx.backend.table("reviews")
            .select(REVIEW_SELECT)
            .eq("book_id", self.book_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        reviews = parse_rows(Review, rows)
        await self._sync_likes(reviews, replace=offset == 0)
        return Page(reviews, len(rows))

    async def _sync_likes(self, reviews: list[Review], *, replace: bool) -> None:
        session = self.ctx.session
        if replace:
            self._liked = set()
        if session is None or not reviews:
            return
        try:
            rows = await (
                self.ctx.backend.table("review_likes")
                .select("review_id")
                .eq("user_id", session.user_id)
                .in_("review_id", [r.id for r in reviews])
                .execute()
            )
        except NovelNestError as exc:
            logger.error("Like state fetch failed for book %s: %s", self.book_id, exc)
            return
        self._liked.update(_key(r.get("review_id")) for r in rows)

    async def toggle_like(self, review_id: Any) -> bool:
        session = require_session(self.ctx, "Login to like reviews")
        key = _key(review_id)
        was_liked = key in self._liked
        if was_liked:
            self._liked.discard(key)
        else:
            self._liked.add(key)

        table = self.ctx.backend.table("review_likes")
        try:
            if was_liked:
                await table.eq("user_id", session.user_id).eq("review_id", review_id).delete()
            else:
                await table.insert({"user_id": session.user_id, "review_id": review_id})
        except ConflictError:
            logger.debug("Review %s already liked by %s", key, session.user_id)
        except NovelNestError as exc:
            logger.error("Like toggle failed for review %s: %s", key, exc)
            if was_liked:
                self._liked.add(key)
            else:
                self._liked.discard(key)
            self.ctx.notifier.error("Could not update your like")
            return was_liked

        # counts are only ever derived from the remote aggregate
        await self.load()
        return not was_liked

    async def flag(self, review_id: Any) -> FlagOutcome:
        session = require_session(self.ctx, "Login to report reviews")
        try:
            await self.ctx.backend.table("review_flags").insert(
                {"user_id": session.user_id, "review_id": review_id}
            )
        except ConflictError:
            self.ctx.notifier.error("You already reported this.")
            return FlagOutcome.ALREADY_REPORTED
        except NovelNestError as exc:
            logger.error("Flagging review %s failed: %s", review_id, exc)
            self.ctx.notifier.error("Error reporting review")
            return FlagOutcome.FAILED
        self.ctx.notifier.success("Review reported to Admin")
        return FlagOutcome.REPORTED

    async def post(self, rating: Any, comment: str) -> Review | None:
        session = require_session(self.ctx, "Login to review!")
        rating, text = validate_review(rating, comment)
        try:
            rows = await self.ctx.backend.table("reviews").insert(
                {
                    "book_id": self.book_id,
                    "user_id": session.user_id,
                    "rating": rating,
                    "comment": text,
                }
            )
        except NovelNestError as exc:
            logger.error("Posting review on book %s failed: %s", self.book_id, exc)
            self.ctx.notifier.error(exc.message)
            return None

        self.ctx.notifier.success("Posted!")
        await self.load()
        created = parse_rows(Review, rows)
        return created[0] if created else None
