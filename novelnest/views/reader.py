from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from novelnest.core.context import AppContext
from novelnest.core.errors import NovelNestError
from novelnest.schemas.reading import ReaderState
from novelnest.views.deps import utcnow_iso

logger = logging.getLogger(__name__)

PROGRESS_CONFLICT_KEYS = "user_id,book_id"


class Document(Protocol):
    """Rendered PDF handle supplied by the UI's document component."""

    @property
    def page_count(self) -> int | None: ...

    def render_page(self, page: int) -> Any: ...


class ReadingSession:
    """Page navigation inside one open book.

    Every accepted page change upserts ``reading_progress`` in the background
    for signed-in users. Saves are best effort: a failed save is logged and
    never rolls the page back.
    """

    def __init__(
        self,
        ctx: AppContext,
        *,
        book_id: Any,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.ctx = ctx
        self.book_id = book_id
        self._on_close = on_close
        self.state = ReaderState.CLOSED
        self.page = 1
        self.total_pages: int | None = None
        self.input_text = "1"
        self.error: str | None = None
        self.document: Document | None = None
        self._saves: set[asyncio.Task[None]] = set()

    @property
    def saving(self) -> bool:
        return any(not t.done() for t in self._saves)

    @property
    def can_go_back(self) -> bool:
        return self.state is ReaderState.READY and self.page > 1

    @property
    def can_go_forward(self) -> bool:
        return self.state is ReaderState.READY and self.total_pages is not None and self.page < self.total_pages

    def open(self, document: Document | None = None, *, initial_page: int = 1) -> None:
        self.state = ReaderState.LOADING
        self.document = document
        self.error = None
        self.total_pages = None
        self.page = max(1, int(initial_page or 1))
        self.input_text = str(self.page)
        if document is not None and document.page_count:
            self.document_loaded(document.page_count)

    def document_loaded(self, page_count: int) -> None:
        if self.state is not ReaderState.LOADING:
            logger.debug("Ignoring page count for book %s in state %s", self.book_id, self.state.value)
            return
        if page_count < 1:
            self.document_failed("Document has no pages")
            return
        self.total_pages = page_count
        self.page = min(max(1, self.page), page_count)
        self.input_text = str(self.page)
        self.state = ReaderState.READY

    def document_failed(self, reason: object) -> None:
        logger.warning("Document for book %s failed to load: %s", self.book_id, reason)
        self.error = str(reason)
        self.state = ReaderState.ERROR

    def render(self) -> Any:
        if self.state is not ReaderState.READY or self.document is None:
            return None
        return self.document.render_page(self.page)

    def navigate(self, delta: int) -> bool:
        return self.jump_to(self.page + delta)

    def jump_to(self, page: int) -> bool:
        if self.state is not ReaderState.READY or self.total_pages is None:
            return False
        if not 1 <= page <= self.total_pages:
            return False
        self.page = page
        self.input_text = str(page)
        self._save(page)
        return True

    def set_input(self, text: str) -> None:
        self.input_text = text

    def confirm_input(self) -> bool:
        try:
            target = int(self.input_text.strip())
        except (TypeError, ValueError):
            target = None
        if target is None or not self.jump_to(target):
            self.input_text = str(self.page)
            return False
        return True

    def _save(self, page: int) -> None:
        session = self.ctx.session
        if session is None:
            return
        task = asyncio.get_running_loop().create_task(self._persist(session.user_id, page, self.total_pages))
        self._saves.add(task)
        task.add_done_callback(self._saves.discard)

    async def _persist(self, user_id: str, page: int, total_pages: int | None) -> None:
        row = {
            "user_id": user_id,
            "book_id": self.book_id,
            "current_page": page,
            "total_pages": total_pages,
            "last_read": utcnow_iso(),
        }
        try:
            await self.ctx.backend.table("reading_progress").upsert(row, on_conflict=PROGRESS_CONFLICT_KEYS)
        except NovelNestError:
            logger.exception("Saving progress for book %s (page %s) failed", self.book_id, page)

    async def wait_saved(self) -> None:
        pending = [t for t in self._saves if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        if self.state is ReaderState.CLOSED:
            return
        self.state = ReaderState.CLOSED
        await self.wait_saved()
        self.document = None
        if self._on_close is not None:
            await self._on_close()
