from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
import jwt

from novelnest.core.config import Settings
from novelnest.core.errors import AuthRequired, Forbidden, RemoteFailure, ValidationError
from novelnest.schemas.profile import Role

logger = logging.getLogger(__name__)

SessionListener = Callable[[str, "Session | None"], None]


@dataclass(slots=True)
class Session:
    user_id: str
    email: str
    access_token: str
    refresh_token: str = ""
    expires_at: int | None = None


class Capability(str, Enum):
    SUBMIT_BOOKS = "submit_books"
    PUBLISH_DIRECTLY = "publish_directly"
    REVIEW_SUBMISSIONS = "review_submissions"
    MODERATE_REVIEWS = "moderate_reviews"
    MANAGE_REQUESTS = "manage_requests"
    MANAGE_AUTHORS = "manage_authors"
    VIEW_STATS = "view_stats"


_STAFF = frozenset(
    {
        Capability.SUBMIT_BOOKS,
        Capability.PUBLISH_DIRECTLY,
        Capability.REVIEW_SUBMISSIONS,
        Capability.MODERATE_REVIEWS,
        Capability.MANAGE_REQUESTS,
        Capability.VIEW_STATS,
    }
)

_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.USER: frozenset(),
    Role.AUTHOR: frozenset({Capability.SUBMIT_BOOKS}),
    Role.ADMIN: _STAFF,
    Role.SUPER_ADMIN: _STAFF | {Capability.MANAGE_AUTHORS},
}


def can(role: Role, capability: Capability) -> bool:
    return capability in _CAPABILITIES.get(role, frozenset())


def require_capability(role: Role, capability: Capability) -> None:
    if not can(role, capability):
        raise Forbidden(f"Role {role.value} cannot {capability.value.replace('_', ' ')}")


def _decode_token(settings: Settings, token: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"leeway": settings.jwt_exp_leeway_seconds}
    if settings.supabase_jwt_secret:
        kwargs["algorithms"] = [settings.jwt_algorithm]
        if settings.jwt_audience:
            kwargs["audience"] = settings.jwt_audience
        else:
            kwargs["options"] = {"verify_aud": False}
        key = settings.supabase_jwt_secret
    else:
        # signature left to the platform without a shared secret; expiry is still checked
        kwargs["options"] = {"verify_signature": False, "verify_exp": True, "verify_aud": False}
        kwargs["algorithms"] = [settings.jwt_algorithm]
        key = ""

    try:
        return jwt.decode(token, key, **kwargs)
    except jwt.PyJWTError as exc:
        raise AuthRequired("Invalid or expired session token") from exc


def _parse_payload(payload: dict[str, Any], *, access_token: str, refresh_token: str = "") -> Session:
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise AuthRequired("Session token has no subject")

    raw_exp = payload.get("exp")
    return Session(
        user_id=user_id,
        email=str(payload.get("email") or "").strip().lower(),
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=int(raw_exp) if isinstance(raw_exp, (int, float)) else None,
    )


def _json_body(res: httpx.Response) -> dict[str, Any]:
    try:
        payload = res.json()
    except ValueError as exc:
        logger.error("Auth service sent a non-JSON body with status %s", res.status_code)
        raise RemoteFailure("Malformed response from auth service", status_code=res.status_code) from exc
    return payload if isinstance(payload, dict) else {}


def _auth_error(res: httpx.Response) -> Exception:
    try:
        payload = res.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = str(
        payload.get("error_description") or payload.get("msg") or payload.get("message") or "Authentication failed"
    )
    if res.status_code == 401:
        return AuthRequired(message)
    if res.status_code in {400, 422}:
        return ValidationError(message)
    return RemoteFailure(message, status_code=res.status_code)


class AuthClient:
    """Session provider: sign-in/out, password flows and change subscription."""

    def __init__(self, settings: Settings, *, http: httpx.AsyncClient) -> None:
        self.settings = settings
        self._http = http
        self._session: Session | None = None
        self._listeners: list[SessionListener] = []

    @property
    def session(self) -> Session | None:
        return self._session

    def access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    def on_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self._session)
            except Exception:
                logger.exception("Session listener failed on %s", event)

    def _set_session(self, session: Session | None, event: str) -> None:
        self._session = session
        self._emit(event)

    def restore(self, access_token: str, refresh_token: str = "") -> Session:
        payload = _decode_token(self.settings, access_token)
        session = _parse_payload(payload, access_token=access_token, refresh_token=refresh_token)
        self._set_session(session, "SIGNED_IN")
        return session

    async def _post(self, path: str, *, json: dict[str, Any], bearer: str | None = None) -> httpx.Response:
        headers = {
            "apikey": self.settings.supabase_anon_key,
            "Authorization": f"Bearer {bearer or self.settings.supabase_anon_key}",
        }
        try:
            res = await self._http.post(f"{self.settings.auth_url}{path}", json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Auth request %s failed: %s", path, exc)
            raise RemoteFailure(f"Network error: {exc}") from exc
        if res.status_code >= 400:
            raise _auth_error(res)
        return res

    def _session_from_body(self, body: dict[str, Any]) -> Session | None:
        token = str(body.get("access_token") or "")
        if not token:
            return None
        payload = _decode_token(self.settings, token)
        return _parse_payload(payload, access_token=token, refresh_token=str(body.get("refresh_token") or ""))

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        email = email.strip().lower()
        if not email or not password:
            raise ValidationError("Email and password are required")
        res = await self._post("/token?grant_type=password", json={"email": email, "password": password})
        session = self._session_from_body(_json_body(res))
        if session is None:
            raise RemoteFailure("Sign-in response carried no session")
        self._set_session(session, "SIGNED_IN")
        logger.info("Signed in user %s", session.user_id)
        return session

    async def sign_up(self, email: str, password: str) -> Session | None:
        email = email.strip().lower()
        if not email or not password:
            raise ValidationError("Email and password are required")
        res = await self._post("/signup", json={"email": email, "password": password})
        session = self._session_from_body(_json_body(res))
        if session is not None:
            self._set_session(session, "SIGNED_IN")
        return session

    async def sign_out(self) -> None:
        token = self.access_token()
        try:
            if token:
                await self._post("/logout", json={}, bearer=token)
        except (AuthRequired, RemoteFailure):
            logger.warning("Remote sign-out failed; clearing local session anyway")
        finally:
            self._set_session(None, "SIGNED_OUT")

    async def update_password(self, new_password: str) -> None:
        token = self.access_token()
        if not token:
            raise AuthRequired("Sign in to change your password")
        headers = {"apikey": self.settings.supabase_anon_key, "Authorization": f"Bearer {token}"}
        try:
            res = await self._http.put(f"{self.settings.auth_url}/user", json={"password": new_password}, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteFailure(f"Network error: {exc}") from exc
        if res.status_code >= 400:
            raise _auth_error(res)
        self._emit("USER_UPDATED")

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> None:
        email = email.strip().lower()
        if not email:
            raise ValidationError("Email is required")
        path = "/recover"
        if redirect_to:
            path = f"/recover?redirect_to={quote(redirect_to, safe='')}"
        await self._post(path, json={"email": email})
