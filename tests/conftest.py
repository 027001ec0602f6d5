from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import pytest

from fakes import JWT_SECRET, FakeSupabase, sign_in
from novelnest.core.config import Settings
from novelnest.core.context import AppContext, create_context
from novelnest.services.auth import Session


@pytest.fixture
def fake() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SUPABASE_URL="http://supabase.test",
        SUPABASE_ANON_KEY="anon-key",
        SUPABASE_JWT_SECRET=JWT_SECRET,
        APP_PUBLIC_URL="http://novelnest.test",
        SEARCH_DEBOUNCE_SECONDS=0.01,
    )


@pytest.fixture
async def ctx(fake: FakeSupabase, settings: Settings) -> AsyncIterator[AppContext]:
    context = create_context(settings, transport=fake.transport())
    yield context
    await context.aclose()


@pytest.fixture
def login(ctx: AppContext, fake: FakeSupabase) -> Callable[..., Session]:
    def _login(user_id: str = "user-1", email: str = "reader@example.com") -> Session:
        return sign_in(ctx, fake, user_id, email)

    return _login
