from __future__ import annotations

import logging

from novelnest.core.context import AppContext
from novelnest.core.errors import ConflictError, NovelNestError, ValidationError
from novelnest.schemas.request import AccessStatus, AdminAccessRequest, BookRequest, RequestStatus
from novelnest.views.deps import parse_rows, require_session

logger = logging.getLogger(__name__)


async def submit_book_request(ctx: AppContext, *, title: str, author: str = "") -> BookRequest | None:
    session = require_session(ctx, "Please login to request books")
    title = (title or "").strip()
    if not title:
        raise ValidationError("Book title is required")
    try:
        rows = await ctx.backend.table("book_requests").insert(
            {
                "user_id": session.user_id,
                "title": title,
                "author": (author or "").strip(),
                "status": RequestStatus.PENDING.value,
            }
        )
    except NovelNestError as exc:
        logger.error("Book request for %r failed: %s", title, exc)
        ctx.notifier.error(exc.message)
        return None
    ctx.notifier.success("Request sent to Admin!")
    created = parse_rows(BookRequest, rows)
    return created[0] if created else None


async def request_admin_access(ctx: AppContext) -> AccessStatus | None:
    """Ask to become an author; a second request by the same user is reported, not failed."""
    session = require_session(ctx, "Please login to request access")
    try:
        await ctx.backend.table("admin_requests").insert(
            {"user_id": session.user_id, "status": AccessStatus.PENDING.value}
        )
    except ConflictError:
        ctx.notifier.error("You have already requested access.")
        return await my_access_status(ctx)
    except NovelNestError as exc:
        logger.error("Access request for %s failed: %s", session.user_id, exc)
        ctx.notifier.error("Could not send your request")
        return None
    ctx.notifier.success("Request sent! An admin will review it.")
    return AccessStatus.PENDING


async def my_access_status(ctx: AppContext) -> AccessStatus | None:
    session = require_session(ctx)
    try:
        rows = await (
            ctx.backend.table("admin_requests")
            .select("*")
            .eq("user_id", session.user_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
    except NovelNestError as exc:
        logger.error("Access status lookup for %s failed: %s", session.user_id, exc)
        return None
    requests = parse_rows(AdminAccessRequest, rows)
    return requests[0].status if requests else None
