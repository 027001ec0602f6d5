from __future__ import annotations

import logging
import time
from typing import Any

from novelnest.core.context import AppContext
from novelnest.core.errors import NovelNestError, ValidationError
from novelnest.schemas.profile import Profile, ProfilePatch
from novelnest.schemas.review import Review
from novelnest.services.storage import Upload
from novelnest.views.deps import parse_rows, require_session
from novelnest.views.reviews import delete_review

logger = logging.getLogger(__name__)


def avatar_object_key(user_id: str, upload: Upload, *, now: float | None = None) -> str:
    stamp = int((now if now is not None else time.time()) * 1000)
    ext = upload.extension or "png"
    return f"{user_id}-{stamp}.{ext}"


class ProfileView:
    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self.profile: Profile | None = None
        self.reviews: list[Review] = []

    async def load(self) -> Profile | None:
        session = require_session(self.ctx)
        try:
            row = await self.ctx.backend.table("profiles").select("*").eq("id", session.user_id).maybe_single()
            self.profile = Profile.model_validate(row) if row else Profile(id=session.user_id, email=session.email)
        except NovelNestError as exc:
            logger.error("Profile fetch for %s failed: %s", session.user_id, exc)
            self.ctx.notifier.error("Could not load your profile")
        await self._load_reviews(session.user_id)
        return self.profile

    async def _load_reviews(self, user_id: str) -> None:
        try:
            rows = await (
                self.ctx.backend.table("reviews")
                .select("*, novels(title)")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except NovelNestError as exc:
            logger.error("Review history fetch for %s failed: %s", user_id, exc)
            self.reviews = []
            return
        self.reviews = parse_rows(Review, rows)

    async def update(self, patch: ProfilePatch) -> bool:
        session = require_session(self.ctx)
        row: dict[str, Any] = {
            "id": session.user_id,
            "nickname": (patch.nickname or "").strip() or None,
            "full_name": (patch.full_name or "").strip() or None,
            "date_of_birth": patch.date_of_birth.isoformat() if patch.date_of_birth else None,
        }
        try:
            rows = await self.ctx.backend.table("profiles").upsert(row, on_conflict="id")
        except NovelNestError as exc:
            logger.error("Profile update for %s failed: %s", session.user_id, exc)
            self.ctx.notifier.error("Could not update your profile")
            return False
        if rows:
            self.profile = Profile.model_validate(rows[0])
        self.ctx.notifier.success("Profile updated!")
        return True

    async def upload_avatar(self, upload: Upload) -> str | None:
        session = require_session(self.ctx)
        if not upload.data:
            raise ValidationError("Choose an image to upload")
        key = avatar_object_key(session.user_id, upload)
        try:
            public_url = await self.ctx.storage.upload(self.ctx.settings.avatars_bucket, key, upload)
            await self.ctx.backend.table("profiles").eq("id", session.user_id).update({"avatar_url": public_url})
        except NovelNestError as exc:
            self.ctx.notifier.error(f"Error uploading: {exc.message}")
            return None
        if self.profile is not None:
            self.profile = self.profile.model_copy(update={"avatar_url": public_url})
        self.ctx.notifier.success("Avatar updated!")
        return public_url

    async def change_password(self, new_password: str, confirm_password: str) -> bool:
        require_session(self.ctx)
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")
        minimum = self.ctx.settings.min_password_length
        if len(new_password) < minimum:
            raise ValidationError(f"Password must be at least {minimum} characters")
        try:
            await self.ctx.auth.update_password(new_password)
        except NovelNestError as exc:
            self.ctx.notifier.error(exc.message)
            return False
        self.ctx.notifier.success("Password updated successfully!")
        return True

    async def delete_review(self, review_id: Any) -> bool:
        require_session(self.ctx)
        if not await delete_review(self.ctx, review_id):
            return False
        self.reviews = [r for r in self.reviews if str(r.id) != str(review_id)]
        return True

    async def sign_out(self) -> None:
        await self.ctx.auth.sign_out()
        self.profile = None
        self.reviews = []
