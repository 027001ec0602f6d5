from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

NoticeListener = Callable[["Notice"], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Notice:
    kind: str
    message: str
    created_at: datetime = field(default_factory=_now)


class Notifier:
    """Fire-and-forget sink for transient user-visible messages (toasts)."""

    def __init__(self, *, history: int = 50) -> None:
        self._notices: deque[Notice] = deque(maxlen=history)
        self._listeners: list[NoticeListener] = []

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    @property
    def last(self) -> Notice | None:
        return self._notices[-1] if self._notices else None

    def messages(self, kind: str | None = None) -> list[str]:
        return [n.message for n in self._notices if kind is None or n.kind == kind]

    def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _push(self, kind: str, message: str) -> Notice:
        notice = Notice(kind=kind, message=message)
        self._notices.append(notice)
        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("Notice listener failed")
        return notice

    def success(self, message: str) -> Notice:
        logger.info("notice: %s", message)
        return self._push("success", message)

    def info(self, message: str) -> Notice:
        logger.info("notice: %s", message)
        return self._push("info", message)

    def error(self, message: str) -> Notice:
        logger.warning("error notice: %s", message)
        return self._push("error", message)

    def clear(self) -> None:
        self._notices.clear()
