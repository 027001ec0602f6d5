import pytest

from fakes import JWT_SECRET
from novelnest.core.errors import AuthRequired, RemoteFailure, ValidationError
from novelnest.services.auth import _parse_payload


def test_parse_payload_success() -> None:
    session = _parse_payload(
        {"sub": "123e4567", "email": " U@Example.com ", "exp": 1700000000},
        access_token="token",
    )
    assert session.user_id == "123e4567"
    assert session.email == "u@example.com"
    assert session.expires_at == 1700000000


def test_parse_payload_requires_subject() -> None:
    with pytest.raises(AuthRequired):
        _parse_payload({"email": "u@example.com"}, access_token="token")


async def test_sign_in_with_password(ctx, fake) -> None:
    uid = fake.add_user("reader@example.com", "hunter22")
    events: list[tuple[str, object]] = []
    ctx.auth.on_change(lambda event, session: events.append((event, session)))

    session = await ctx.auth.sign_in_with_password("Reader@Example.com", "hunter22")
    assert session.user_id == uid
    assert ctx.session is session
    assert ctx.user_id == uid
    assert session.refresh_token == f"refresh-{uid}"
    assert events == [("SIGNED_IN", session)]


async def test_wrong_password_is_rejected(ctx, fake) -> None:
    fake.add_user("reader@example.com", "hunter22")
    with pytest.raises(ValidationError, match="Invalid login credentials"):
        await ctx.auth.sign_in_with_password("reader@example.com", "nope")
    assert ctx.session is None


async def test_empty_credentials_make_no_call(ctx, fake) -> None:
    with pytest.raises(ValidationError):
        await ctx.auth.sign_in_with_password("", "x")
    assert fake.requests == []


async def test_sign_up_starts_session(ctx, fake) -> None:
    session = await ctx.auth.sign_up("new@example.com", "hunter22")
    assert session is not None
    assert session.user_id == fake.users["new@example.com"]["id"]


async def test_restore_rejects_expired_token(ctx, fake) -> None:
    token = fake.issue_token("user-1", expires_in=-3600)
    with pytest.raises(AuthRequired):
        ctx.auth.restore(token)
    assert ctx.session is None


async def test_restore_rejects_foreign_signature(ctx, fake) -> None:
    token = fake.issue_token("user-1", secret="some-other-secret-0123456789abcdef")
    with pytest.raises(AuthRequired):
        ctx.auth.restore(token)


async def test_restore_accepts_valid_token(ctx, fake) -> None:
    token = fake.issue_token("user-1", "reader@example.com")
    session = ctx.auth.restore(token, "refresh")
    assert session.user_id == "user-1"
    assert session.access_token == token
    assert JWT_SECRET == ctx.settings.supabase_jwt_secret


async def test_sign_out_always_clears(ctx, fake, login) -> None:
    login()
    events: list[str] = []
    unsubscribe = ctx.auth.on_change(lambda event, session: events.append(event))
    fake.fail("auth/logout", "POST", status=500)

    await ctx.auth.sign_out()
    assert ctx.session is None
    assert events == ["SIGNED_OUT"]

    unsubscribe()
    login()
    assert events == ["SIGNED_OUT"]


async def test_password_reset_carries_redirect(ctx, fake) -> None:
    await ctx.auth.reset_password_for_email("Reader@example.com", redirect_to="http://novelnest.test/update-password")
    request = fake.recover_requests[-1]
    assert request.url.params["redirect_to"] == "http://novelnest.test/update-password"
    assert b"reader@example.com" in request.content


async def test_listener_errors_do_not_break_sign_in(ctx, fake) -> None:
    fake.add_user("reader@example.com", "hunter22")

    def broken(event, session):
        raise RuntimeError("listener bug")

    ctx.auth.on_change(broken)
    session = await ctx.auth.sign_in_with_password("reader@example.com", "hunter22")
    assert ctx.session is session


async def test_non_json_sign_in_reply_is_remote_failure(ctx, fake) -> None:
    fake.add_user("reader@example.com", "hunter22")
    fake.garble("auth/token", "POST")
    with pytest.raises(RemoteFailure, match="Malformed response"):
        await ctx.auth.sign_in_with_password("reader@example.com", "hunter22")
    assert ctx.session is None
