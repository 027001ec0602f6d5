from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError as SchemaError

from novelnest.core.context import AppContext
from novelnest.core.errors import AuthRequired
from novelnest.services.auth import Session

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def require_session(ctx: AppContext, message: str = "Please login!") -> Session:
    session = ctx.session
    if session is None:
        raise AuthRequired(message)
    return session


def parse_rows(model: type[ModelT], rows: Iterable[dict[str, Any]]) -> list[ModelT]:
    out: list[ModelT] = []
    for row in rows:
        try:
            out.append(model.model_validate(row))
        except SchemaError:
            logger.warning("Skipping malformed %s row id=%s", model.__name__, (row or {}).get("id"))
    return out
