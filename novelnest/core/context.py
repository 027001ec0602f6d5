from __future__ import annotations

from dataclasses import dataclass

import httpx

from novelnest.core.config import Settings, get_settings
from novelnest.services.auth import AuthClient, Session
from novelnest.services.backend import BackendClient
from novelnest.services.notifications import Notifier
from novelnest.services.storage import StorageClient


@dataclass(slots=True)
class AppContext:
    """Application-wide collaborators handed to every view controller."""

    settings: Settings
    http: httpx.AsyncClient
    auth: AuthClient
    backend: BackendClient
    storage: StorageClient
    notifier: Notifier

    @property
    def session(self) -> Session | None:
        return self.auth.session

    @property
    def user_id(self) -> str | None:
        session = self.auth.session
        return session.user_id if session else None

    async def aclose(self) -> None:
        await self.http.aclose()


def create_context(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    notifier: Notifier | None = None,
) -> AppContext:
    settings = settings or get_settings()
    http = httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        transport=transport,
        headers={"User-Agent": f"{settings.app_name}/1.0"},
    )
    auth = AuthClient(settings, http=http)
    return AppContext(
        settings=settings,
        http=http,
        auth=auth,
        backend=BackendClient(settings, http=http, token_getter=auth.access_token),
        storage=StorageClient(settings, http=http, token_getter=auth.access_token),
        notifier=notifier or Notifier(),
    )
