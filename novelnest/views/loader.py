from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from novelnest.core.errors import NovelNestError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One fetched window: the parsed items and how many remote rows it consumed.

    ``rows`` can exceed ``len(items)`` when malformed or dangling rows were
    skipped while parsing.
    """

    items: list[T]
    rows: int


FetchPage = Callable[[int, int], Awaitable[Union[Page[T], list[T]]]]
ErrorHandler = Callable[[NovelNestError], None]


class IncrementalLoader(Generic[T]):
    """Paginated "load more" list over ``fetch(offset, limit)``.

    ``reload`` replaces the held list from offset 0; ``load_more`` appends the
    next window. Offsets and exhaustion are counted in remote rows, so a
    ``fetch`` that skips rows returns a ``Page`` with the raw row count. A
    window with fewer than ``page_size`` rows marks the list exhausted until
    the next ``reload``. Results of a request superseded by a later ``reload``
    are dropped.
    """

    def __init__(
        self,
        fetch: FetchPage[T],
        *,
        page_size: int,
        on_error: ErrorHandler | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._fetch = fetch
        self.page_size = page_size
        self._on_error = on_error
        self.items: list[T] = []
        self.has_more = True
        self.loading = False
        self._offset = 0
        self._token = 0
        self._in_flight: int | None = None

    @property
    def token(self) -> int:
        return self._token

    @property
    def offset(self) -> int:
        return self._offset

    def reset(self) -> None:
        self._token += 1
        self.items = []
        self.has_more = True
        self.loading = False
        self._offset = 0
        self._in_flight = None

    def remove(self, predicate: Callable[[T], bool]) -> int:
        """Drop held items whose remote rows were deleted; returns how many."""
        kept = [item for item in self.items if not predicate(item)]
        removed = len(self.items) - len(kept)
        self.items = kept
        self._offset = max(0, self._offset - removed)
        return removed

    async def reload(self) -> list[T]:
        self.reset()
        await self._load(self._token, offset=0, append=False)
        return self.items

    async def load_more(self) -> list[T]:
        if not self.has_more:
            return []
        if self._in_flight == self._token:
            logger.debug("load_more ignored: page already in flight")
            return []
        return await self._load(self._token, offset=self._offset, append=True)

    async def _load(self, token: int, *, offset: int, append: bool) -> list[T]:
        self._in_flight = token
        self.loading = True
        try:
            result = await self._fetch(offset, self.page_size)
        except NovelNestError as exc:
            if token != self._token:
                return []
            logger.error("List fetch failed at offset %s: %s", offset, exc)
            if not append:
                self.items = []
            self.has_more = False
            if self._on_error is not None:
                self._on_error(exc)
            return []
        finally:
            if self._in_flight == token:
                self._in_flight = None
                self.loading = False

        if token != self._token:
            logger.debug("Dropping stale page (token %s, current %s)", token, self._token)
            return []

        if isinstance(result, Page):
            page = list(result.items)
            consumed = max(result.rows, len(page))
        else:
            page = list(result)
            consumed = len(page)

        if consumed < self.page_size:
            self.has_more = False
        self._offset = offset + consumed
        self.items = [*self.items, *page] if append else page
        return page
