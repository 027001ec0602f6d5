from __future__ import annotations

import itertools
import json
import re
import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import jwt

JWT_SECRET = "novelnest-test-secret-0123456789abcdef"

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

# embed name on a table -> (target table, "one" | "many", join column)
# "one": target.id == row[join column]; "many": target[join column] == row.id
RELATIONS: dict[tuple[str, str], tuple[str, str, str]] = {
    ("novels", "reviews"): ("reviews", "many", "book_id"),
    ("reviews", "profiles"): ("profiles", "one", "user_id"),
    ("reviews", "review_likes"): ("review_likes", "many", "review_id"),
    ("reviews", "novels"): ("novels", "one", "book_id"),
    ("bookmarks", "novels"): ("novels", "one", "book_id"),
    ("reading_progress", "novels"): ("novels", "one", "book_id"),
    ("book_requests", "profiles"): ("profiles", "one", "user_id"),
    ("admin_requests", "profiles"): ("profiles", "one", "user_id"),
    ("review_flags", "reviews"): ("reviews", "one", "review_id"),
}

UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "bookmarks": [("user_id", "book_id")],
    "review_likes": [("user_id", "review_id")],
    "review_flags": [("user_id", "review_id")],
    "reading_progress": [("user_id", "book_id")],
    "admin_requests": [("user_id",)],
}

_CONTROL_PARAMS = {"select", "order", "offset", "limit", "on_conflict"}


def _text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _split_top(raw: str, sep: str = ",") -> list[str]:
    """Split on ``sep`` outside parentheses and double quotes."""
    parts: list[str] = []
    depth = 0
    quoted = False
    escaped = False
    buf: list[str] = []
    for ch in raw:
        if escaped:
            buf.append(ch)
            escaped = False
            continue
        if ch == "\\":
            buf.append(ch)
            escaped = True
            continue
        if ch == '"':
            quoted = not quoted
        elif not quoted and ch == "(":
            depth += 1
        elif not quoted and ch == ")":
            depth -= 1
        if ch == sep and depth == 0 and not quoted:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    if buf:
        parts.append("".join(buf))
    return [p for p in parts if p != ""]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def _number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _matches(row: dict[str, Any], column: str, op: str, operand: str) -> bool:
    value = row.get(column)
    if op == "eq":
        return value is not None and _text(value) == operand
    if op == "neq":
        return value is not None and _text(value) != operand
    if op == "is":
        return value is None if operand == "null" else _text(value) == operand
    if op in {"gt", "gte", "lt", "lte"}:
        left, right = _number(value), _number(operand)
        if left is None or right is None:
            return False
        return {
            "gt": left > right,
            "gte": left >= right,
            "lt": left < right,
            "lte": left <= right,
        }[op]
    if op in {"ilike", "like"}:
        if value is None:
            return False
        pattern = "".join(".*" if ch in "*%" else re.escape(ch) for ch in operand)
        flags = re.IGNORECASE if op == "ilike" else 0
        return re.fullmatch(pattern, str(value), flags | re.DOTALL) is not None
    if op == "in":
        options = {_unquote(o) for o in _split_top(operand.strip("()"))}
        return value is not None and _text(value) in options
    raise AssertionError(f"unsupported filter operator {op!r}")


def _condition(row: dict[str, Any], condition: str) -> bool:
    column, op, operand = condition.split(".", 2)
    return _matches(row, column, op, _unquote(operand))


class FakeSupabase:
    """In-memory stand-in for the hosted backend: REST tables, auth and storage."""

    def __init__(self, *, secret: str = JWT_SECRET, base_url: str = "http://supabase.test") -> None:
        self.secret = secret
        self.base_url = base_url
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.requests: list[httpx.Request] = []
        self.uploads: dict[str, bytes] = {}
        self.users: dict[str, dict[str, str]] = {}
        self.recover_requests: list[httpx.Request] = []
        self._failures: dict[tuple[str, str], tuple[int | None, dict[str, Any] | bytes]] = {}
        self._ids = itertools.count(1000)
        self._clock = itertools.count(1)

    # setup helpers

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def stamp(self) -> str:
        return (_EPOCH + timedelta(minutes=next(self._clock))).isoformat()

    def seed(self, table: str, *rows: dict[str, Any]) -> list[dict[str, Any]]:
        stored = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", next(self._ids))
            row.setdefault("created_at", self.stamp())
            self.tables[table].append(row)
            stored.append(row)
        return stored

    def rows(self, table: str, **where: Any) -> list[dict[str, Any]]:
        return [r for r in self.tables[table] if all(_text(r.get(k)) == _text(v) for k, v in where.items())]

    def fail(self, target: str, method: str = "GET", *, status: int | None = 500, **payload: Any) -> None:
        """Make every ``method`` request on ``target`` fail; status None means a transport error."""
        body = {"message": "boom", **payload}
        self._failures[(method.upper(), target)] = (status, body)

    def garble(self, target: str, method: str = "GET") -> None:
        """Answer ``method`` requests on ``target`` with a 200 whose body is not JSON."""
        self._failures[(method.upper(), target)] = (200, b"<html>upstream hiccup</html>")

    def heal(self) -> None:
        self._failures.clear()

    def add_user(self, email: str, password: str, *, user_id: str | None = None) -> str:
        uid = user_id or str(uuid.uuid4())
        self.users[email.lower()] = {"id": uid, "password": password}
        return uid

    def issue_token(self, user_id: str, email: str = "", *, expires_in: int = 3600, secret: str | None = None) -> str:
        now = int(time.time())
        claims = {
            "sub": user_id,
            "email": email,
            "aud": "authenticated",
            "role": "authenticated",
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(claims, secret or self.secret, algorithm="HS256")

    def calls(self, method: str, path_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(path_suffix)]

    # dispatch

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/rest/v1/"):
            return self._guarded(request, path[len("/rest/v1/"):], self._rest)
        if path.startswith("/auth/v1/"):
            return self._guarded(request, "auth" + path[len("/auth/v1"):], self._auth)
        if path.startswith("/storage/v1/object/"):
            bucket = path[len("/storage/v1/object/"):].split("/", 1)[0]
            return self._guarded(request, f"storage:{bucket}", self._storage)
        return httpx.Response(404, json={"message": f"no route for {path}"})

    def _guarded(self, request: httpx.Request, target: str, handler: Any) -> httpx.Response:
        failure = self._failures.get((request.method, target))
        if failure is not None:
            status, body = failure
            if status is None:
                raise httpx.ConnectError("connection refused", request=request)
            if isinstance(body, bytes):
                return httpx.Response(status, content=body)
            return httpx.Response(status, json=body)
        return handler(request, target)

    # REST

    def _filtered(self, table: str, params: list[tuple[str, str]]) -> list[dict[str, Any]]:
        rows = list(self.tables[table])
        for key, value in params:
            if key in _CONTROL_PARAMS:
                continue
            if key == "or":
                conditions = _split_top(value[1:-1])
                rows = [r for r in rows if any(_condition(r, c) for c in conditions)]
                continue
            op, operand = value.split(".", 1)
            rows = [r for r in rows if _matches(r, key, op, operand)]
        return rows

    def _project(self, table: str, row: dict[str, Any], select: str) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for item in _split_top(select or "*"):
            if "(" in item:
                name = item[: item.index("(")].split("!", 1)[0]
                inner = item[item.index("(") + 1 : -1]
                out[name] = self._embed(table, row, name, inner)
            elif item == "*":
                out.update(row)
            else:
                out[item] = row.get(item)
        return out

    def _embed(self, table: str, row: dict[str, Any], name: str, inner: str) -> Any:
        target, kind, column = RELATIONS[(table, name)]
        if kind == "one":
            key = row.get(column)
            for candidate in self.tables[target]:
                if key is not None and _text(candidate.get("id")) == _text(key):
                    return self._project(target, candidate, inner)
            return None
        children = [c for c in self.tables[target] if _text(c.get(column)) == _text(row.get("id"))]
        if inner.strip() == "count":
            return [{"count": len(children)}]
        return [self._project(target, c, inner) for c in children]

    @staticmethod
    def _sorted(rows: list[dict[str, Any]], order: str) -> list[dict[str, Any]]:
        for term in reversed(order.split(",")):
            column, *mods = term.split(".")
            desc = "desc" in mods
            nulls_last = "nullslast" in mods or ("nullsfirst" not in mods and not desc)
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            rows = present + missing if nulls_last else missing + present
        return rows

    def _conflict(self, table: str, row: dict[str, Any], keys: list[tuple[str, ...]]) -> dict[str, Any] | None:
        for unique in keys:
            for existing in self.tables[table]:
                if all(_text(existing.get(k)) == _text(row.get(k)) for k in unique):
                    return existing
        return None

    def _rest(self, request: httpx.Request, table: str) -> httpx.Response:
        params = list(request.url.params.multi_items())
        named = dict(params)
        method = request.method

        if method in {"GET", "HEAD"}:
            rows = self._filtered(table, params)
            if "order" in named:
                rows = self._sorted(rows, named["order"])
            total = len(rows)
            offset = int(named.get("offset", 0))
            rows = rows[offset:]
            if "limit" in named:
                rows = rows[: int(named["limit"])]
            if method == "HEAD":
                header = f"0-{total - 1}/{total}" if total else f"*/{total}"
                return httpx.Response(200, headers={"content-range": header})
            return httpx.Response(200, json=[self._project(table, r, named.get("select", "*")) for r in rows])

        body = json.loads(request.content) if request.content else None

        if method == "POST":
            incoming = body if isinstance(body, list) else [body]
            prefer = request.headers.get("prefer", "")
            merge = "merge-duplicates" in prefer
            on_conflict = named.get("on_conflict")
            unique = [tuple(on_conflict.split(","))] if on_conflict else UNIQUE_KEYS.get(table, [])
            written = []
            for values in incoming:
                row = dict(values)
                existing = None
                if "id" in row:
                    existing = self._conflict(table, row, [("id",)])
                if existing is None:
                    existing = self._conflict(table, row, unique)
                if existing is not None:
                    if not merge:
                        return httpx.Response(
                            409,
                            json={
                                "code": "23505",
                                "message": f'duplicate key value violates unique constraint "{table}_key"',
                            },
                        )
                    existing.update(row)
                    written.append(existing)
                    continue
                row.setdefault("id", next(self._ids))
                row.setdefault("created_at", self.stamp())
                self.tables[table].append(row)
                written.append(row)
            return httpx.Response(201, json=written)

        if method == "PATCH":
            rows = self._filtered(table, params)
            for row in rows:
                row.update(body or {})
            return httpx.Response(200, json=rows)

        if method == "DELETE":
            rows = self._filtered(table, params)
            doomed = {id(r) for r in rows}
            self.tables[table] = [r for r in self.tables[table] if id(r) not in doomed]
            return httpx.Response(200, json=rows)

        return httpx.Response(405, json={"message": f"{method} not allowed"})

    # auth

    def _session_body(self, user_id: str, email: str) -> dict[str, Any]:
        return {
            "access_token": self.issue_token(user_id, email),
            "refresh_token": f"refresh-{user_id}",
            "token_type": "bearer",
            "user": {"id": user_id, "email": email},
        }

    def _bearer_user(self, request: httpx.Request) -> str | None:
        token = request.headers.get("authorization", "").removeprefix("Bearer ").strip()
        try:
            claims = jwt.decode(token, self.secret, algorithms=["HS256"], audience="authenticated")
        except jwt.PyJWTError:
            return None
        return claims.get("sub")

    def _auth(self, request: httpx.Request, target: str) -> httpx.Response:
        route = target[len("auth"):]
        body = json.loads(request.content) if request.content else {}

        if route == "/token" and request.method == "POST":
            email = str(body.get("email", "")).lower()
            user = self.users.get(email)
            if user is None or user["password"] != body.get("password"):
                return httpx.Response(
                    400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"}
                )
            return httpx.Response(200, json=self._session_body(user["id"], email))

        if route == "/signup" and request.method == "POST":
            email = str(body.get("email", "")).lower()
            if email in self.users:
                return httpx.Response(422, json={"msg": "User already registered"})
            uid = self.add_user(email, str(body.get("password", "")))
            return httpx.Response(200, json=self._session_body(uid, email))

        if route == "/logout" and request.method == "POST":
            return httpx.Response(204)

        if route == "/user" and request.method == "PUT":
            uid = self._bearer_user(request)
            if uid is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            for user in self.users.values():
                if user["id"] == uid:
                    user["password"] = str(body.get("password", ""))
            return httpx.Response(200, json={"id": uid})

        if route == "/recover" and request.method == "POST":
            self.recover_requests.append(request)
            return httpx.Response(200, json={})

        return httpx.Response(404, json={"msg": f"no auth route {route}"})

    # storage

    def _storage(self, request: httpx.Request, target: str) -> httpx.Response:
        key = request.url.path[len("/storage/v1/object/"):]
        if request.method != "POST":
            return httpx.Response(405, json={"message": "upload only"})
        if key in self.uploads:
            return httpx.Response(409, json={"statusCode": "409", "error": "Duplicate", "message": "exists"})
        self.uploads[key] = request.content
        return httpx.Response(200, json={"Key": key})


def sign_in(ctx: Any, fake: FakeSupabase, user_id: str = "user-1", email: str = "reader@example.com") -> Any:
    return ctx.auth.restore(fake.issue_token(user_id, email), f"refresh-{user_id}")
