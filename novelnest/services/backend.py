from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

import httpx

from novelnest.core.config import Settings
from novelnest.core.errors import AuthRequired, ConflictError, Forbidden, NotFound, RemoteFailure

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
NO_ROWS = "PGRST116"

TokenGetter = Callable[[], "str | None"]


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _needs_quotes(value: str) -> bool:
    return any(ch in value for ch in ',()"\\:') or value != value.strip()


def contains_pattern(term: str) -> str:
    """Case-insensitive substring pattern for ``ilike`` filters."""
    cleaned = "".join(ch for ch in term.strip() if ch not in "*%")
    return f"*{cleaned}*"


def _rows(res: httpx.Response) -> list[dict[str, Any]]:
    if not res.content:
        return []
    try:
        payload = res.json()
    except ValueError as exc:
        logger.error("Backend sent a non-JSON body with status %s", res.status_code)
        raise RemoteFailure("Malformed response from backend", status_code=res.status_code) from exc
    if isinstance(payload, list):
        return payload
    return [payload] if isinstance(payload, dict) else []


def _content_range_total(header: str | None) -> int:
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else 0


class TableQuery:
    """Chainable read/write request against one remote table."""

    def __init__(self, client: BackendClient, table: str) -> None:
        self._client = client
        self._table = table
        self._select = "*"
        self._filters: list[tuple[str, str]] = []
        self._order: list[str] = []
        self._offset: int | None = None
        self._limit: int | None = None

    @property
    def table(self) -> str:
        return self._table

    def select(self, columns: str = "*") -> TableQuery:
        self._select = "".join(columns.split())
        return self

    def eq(self, column: str, value: Any) -> TableQuery:
        op = "is" if value is None else "eq"
        self._filters.append((column, f"{op}.{_format_value(value)}"))
        return self

    def neq(self, column: str, value: Any) -> TableQuery:
        self._filters.append((column, f"neq.{_format_value(value)}"))
        return self

    def gt(self, column: str, value: Any) -> TableQuery:
        self._filters.append((column, f"gt.{_format_value(value)}"))
        return self

    def ilike(self, column: str, pattern: str) -> TableQuery:
        self._filters.append((column, f"ilike.{pattern}"))
        return self

    def in_(self, column: str, values: Iterable[Any]) -> TableQuery:
        parts = []
        for value in values:
            raw = _format_value(value)
            parts.append(_quote(raw) if _needs_quotes(raw) else raw)
        self._filters.append((column, f"in.({','.join(parts)})"))
        return self

    def ilike_any(self, columns: Iterable[str], term: str) -> TableQuery:
        pattern = _quote(contains_pattern(term))
        conditions = ",".join(f"{col}.ilike.{pattern}" for col in columns)
        self._filters.append(("or", f"({conditions})"))
        return self

    def order(self, column: str, *, desc: bool = False, nulls_last: bool = False) -> TableQuery:
        term = f"{column}.{'desc' if desc else 'asc'}"
        if nulls_last:
            term += ".nullslast"
        self._order.append(term)
        return self

    def range(self, start: int, end: int) -> TableQuery:
        self._offset = max(0, start)
        self._limit = max(0, end - start + 1)
        return self

    def limit(self, count: int) -> TableQuery:
        self._limit = max(0, count)
        return self

    def _params(self, *, with_select: bool = True) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if with_select:
            params.append(("select", self._select))
        params.extend(self._filters)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._offset:
            params.append(("offset", str(self._offset)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    async def execute(self) -> list[dict[str, Any]]:
        res = await self._client.request("GET", self._table, params=self._params())
        return _rows(res)

    async def single(self) -> dict[str, Any]:
        row = await self.maybe_single()
        if row is None:
            raise NotFound(f"No row in {self._table}", code=NO_ROWS)
        return row

    async def maybe_single(self) -> dict[str, Any] | None:
        self._limit = 1
        rows = await self.execute()
        return rows[0] if rows else None

    async def count(self) -> int:
        res = await self._head()
        return _content_range_total(res.headers.get("content-range"))

    async def _head(self) -> httpx.Response:
        return await self._client.request(
            "HEAD",
            self._table,
            params=self._params(),
            prefer="count=exact",
        )

    async def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> list[dict[str, Any]]:
        res = await self._client.request(
            "POST",
            self._table,
            json=values,
            prefer="return=representation",
        )
        return _rows(res)

    async def upsert(
        self,
        values: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str,
    ) -> list[dict[str, Any]]:
        res = await self._client.request(
            "POST",
            self._table,
            params=[("on_conflict", on_conflict)],
            json=values,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return _rows(res)

    async def update(self, values: dict[str, Any]) -> list[dict[str, Any]]:
        res = await self._client.request(
            "PATCH",
            self._table,
            params=self._params(with_select=False),
            json=values,
            prefer="return=representation",
        )
        return _rows(res)

    async def delete(self) -> list[dict[str, Any]]:
        res = await self._client.request(
            "DELETE",
            self._table,
            params=self._params(with_select=False),
            prefer="return=representation",
        )
        return _rows(res)


class BackendClient:
    """Tabular REST client for the hosted backend (PostgREST conventions)."""

    def __init__(
        self,
        settings: Settings,
        *,
        http: httpx.AsyncClient,
        token_getter: TokenGetter | None = None,
    ) -> None:
        self.settings = settings
        self._http = http
        self._token_getter = token_getter

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = self._token_getter() if self._token_getter else None
        headers = {
            "Accept": "application/json",
            "apikey": self.settings.supabase_anon_key,
            "Authorization": f"Bearer {token or self.settings.supabase_anon_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        url = f"{self.settings.rest_url}/{table}"
        try:
            res = await self._http.request(method, url, params=params, json=json, headers=self._headers(prefer))
        except httpx.HTTPError as exc:
            logger.error("Backend transport error on %s %s: %s", method, table, exc)
            raise RemoteFailure(f"Network error: {exc}") from exc

        if res.status_code >= 400:
            raise _error_from_response(method, table, res)
        return res


def _error_payload(res: httpx.Response) -> dict[str, Any]:
    try:
        payload = res.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _error_from_response(method: str, table: str, res: httpx.Response) -> Exception:
    payload = _error_payload(res)
    code = str(payload.get("code") or "") or None
    message = str(payload.get("message") or payload.get("msg") or res.reason_phrase or "Request failed")

    if code == UNIQUE_VIOLATION or res.status_code == 409:
        logger.info("Duplicate key on %s %s: %s", method, table, message)
        return ConflictError(message, code=code or UNIQUE_VIOLATION)
    if code == NO_ROWS or res.status_code == 406:
        return NotFound(message, code=code)

    logger.error("Backend error on %s %s: %s %s %s", method, table, res.status_code, code, message)
    if res.status_code == 401:
        return AuthRequired(message, code=code)
    if res.status_code == 403:
        return Forbidden(message, code=code)
    return RemoteFailure(message, code=code, status_code=res.status_code)
