"""
Tests for the token store, its SQLite mirror and the auth session.
"""
import asyncio

import pytest

from conftest import FakeClock, settle
from dashsync.auth import AuthStatus, TokenMirror, TokenStore
from dashsync.context import AppContext
from dashsync.errors import ApiError, AuthExpired, HttpError


# =============================================================================
# Token store
# =============================================================================

class TestTokenStore:
    """Tests for credential state and listeners."""

    def test_set_and_clear(self):
        store = TokenStore(clock=lambda: 50.0)
        assert store.status == AuthStatus.UNAUTHENTICATED
        assert store.get_token() is None

        credential = store.set("abc")
        assert credential.issued_at == 50.0
        assert store.get_token() == "abc"
        assert store.status == AuthStatus.AUTHENTICATED

        store.clear()
        assert store.get() is None
        assert store.status == AuthStatus.UNAUTHENTICATED

    def test_listeners_and_unsubscribe(self):
        store = TokenStore()
        seen = []
        unsubscribe = store.on_change(lambda credential, status: seen.append(status))

        store.set("abc")
        store.mark_refreshing()
        unsubscribe()
        store.clear()

        assert seen == [AuthStatus.AUTHENTICATED, AuthStatus.REFRESHING]

    def test_is_older_than(self):
        clock = FakeClock(start=0.0)
        store = TokenStore(clock=clock)
        assert not store.is_older_than(600)

        store.set("abc")
        clock.advance(599)
        assert not store.is_older_than(600)
        clock.advance(1)
        assert store.is_older_than(600)


class TestTokenMirror:
    """Tests for the persisted credential."""

    def test_round_trip(self, tmp_path):
        mirror = TokenMirror(tmp_path / "session.db")
        assert mirror.load() is None

        TokenStore(mirror=mirror, clock=lambda: 123.0).set("persisted")

        restored = TokenStore(mirror=TokenMirror(tmp_path / "session.db"), clock=lambda: 999.0)
        credential = restored.restore()
        assert credential.token == "persisted"
        assert credential.issued_at == 123.0
        assert restored.status == AuthStatus.AUTHENTICATED

    def test_clear_removes_mirrored_credential(self, tmp_path):
        mirror = TokenMirror(tmp_path / "nested" / "session.db")
        store = TokenStore(mirror=mirror)
        store.set("abc")
        store.clear()
        assert mirror.load() is None

    def test_restore_without_mirror(self):
        assert TokenStore().restore() is None


# =============================================================================
# Session
# =============================================================================

class TestAuthSession:
    """Tests for login, refresh and logout."""

    @pytest.mark.asyncio
    async def test_login_stores_credential_and_user(self, ctx, transport):
        ctx.token_store.clear()
        transport.reply("POST", "/auth/login", {
            "ok": True,
            "access_token": "fresh",
            "user": {"id": 1, "email": "ops@example.com", "role": "admin"},
        })

        response = await ctx.session.login("ops@example.com", "secret", turnstile_token="cf-token")

        assert response.access_token == "fresh"
        assert ctx.token_store.get_token() == "fresh"
        assert ctx.session.user.email == "ops@example.com"
        assert ctx.session.is_logged_in
        assert transport.calls[0].body == {
            "email": "ops@example.com",
            "password": "secret",
            "turnstile_token": "cf-token",
        }

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_issue_one_request(self, ctx, transport):
        transport.reply("POST", "/auth/refresh", {"ok": True, "access_token": "token-2"})
        gate = transport.gate("POST", "/auth/refresh")

        tasks = [asyncio.create_task(ctx.session.refresh()) for _ in range(3)]
        await settle()
        assert ctx.token_store.status == AuthStatus.REFRESHING
        gate.set()
        await asyncio.gather(*tasks)

        assert transport.count("POST", "/auth/refresh") == 1
        assert ctx.token_store.get_token() == "token-2"
        assert ctx.token_store.status == AuthStatus.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_failed_refresh_clears_credential(self, ctx, transport):
        transport.reply("POST", "/auth/refresh", {"message": "expired"}, status=401)

        with pytest.raises(AuthExpired):
            await ctx.session.refresh()
        assert ctx.token_store.get() is None
        assert ctx.token_store.status == AuthStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_refresh_without_credential_in_body_fails(self, ctx, transport):
        transport.reply("POST", "/auth/refresh", {"ok": False, "message": "no session"})

        with pytest.raises(AuthExpired) as exc:
            await ctx.session.refresh()
        assert exc.value.message == "no session"
        assert ctx.token_store.get() is None

    @pytest.mark.asyncio
    async def test_ensure_fresh_refreshes_old_credential(self, ctx, transport, wall_clock):
        transport.reply("POST", "/auth/refresh", {"ok": True, "access_token": "token-2"})

        assert await ctx.session.ensure_fresh() is False
        wall_clock.advance(ctx.settings.token_max_age_seconds)
        assert await ctx.session.ensure_fresh() is True
        assert ctx.token_store.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_me_accepts_flat_profile(self, ctx, transport):
        transport.reply("GET", "/auth/me", {"ok": True, "id": 7, "email": "flat@example.com"})

        user = await ctx.session.me()

        assert user.id == 7
        assert ctx.session.user.email == "flat@example.com"

    @pytest.mark.asyncio
    async def test_expired_credential_refreshed_once_and_replayed(self, ctx, transport):
        transport.reply("GET", "/auth/me", {"message": "expired"}, status=401)
        transport.reply("GET", "/auth/me", {"ok": True, "user": {"id": 1, "email": "ops@example.com"}})
        transport.reply("POST", "/auth/refresh", {"ok": True, "access_token": "token-2"})

        user = await ctx.session.me()

        assert user.email == "ops@example.com"
        calls = transport.calls_to("GET", "/auth/me")
        assert [c.headers["authorization"] for c in calls] == ["Bearer token-1", "Bearer token-2"]
        assert transport.count("POST", "/auth/refresh") == 1

    @pytest.mark.asyncio
    async def test_repeated_expiry_resets_session(self, ctx, transport):
        transport.reply("GET", "/auth/me", {"message": "expired"}, status=401)
        transport.reply("POST", "/auth/refresh", {"ok": True, "access_token": "token-2"})
        ctx.cache.set("redirects:site:1:v1", {"stale": True})
        logouts = []
        ctx.token_store.on_change(lambda credential, status: logouts.append(status))

        with pytest.raises(AuthExpired) as exc:
            await ctx.session.me()

        assert exc.value.terminal is True
        assert transport.count("GET", "/auth/me") == 2
        assert ctx.token_store.get() is None
        assert len(ctx.cache) == 0
        assert logouts[-1] == AuthStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_logout_clears_state_even_when_request_fails(self, ctx, transport):
        transport.reply("POST", "/auth/logout", {"message": "boom"}, status=500)
        ctx.cache.set("tds:rules:v1", {"rules": []})

        await ctx.session.logout()

        assert ctx.token_store.get() is None
        assert ctx.session.user is None
        assert len(ctx.cache) == 0

    @pytest.mark.asyncio
    async def test_restore_from_mirror(self, settings, transport, wall_clock, tmp_path):
        settings.token_mirror_path = tmp_path / "session.db"
        first = AppContext.create(settings=settings, transport=transport, wall_clock=wall_clock)
        first.token_store.set("mirrored")

        second = AppContext.create(settings=settings, transport=transport, wall_clock=wall_clock)
        transport.reply("GET", "/auth/me", {"ok": True, "user": {"id": 1}})

        assert await second.session.restore() is True
        assert second.token_store.get_token() == "mirrored"
        assert second.session.user.id == 1
        assert transport.count("POST", "/auth/refresh") == 0

    @pytest.mark.asyncio
    async def test_restore_without_session(self, ctx, transport):
        ctx.token_store.clear()
        transport.reply("POST", "/auth/refresh", {"message": "no cookie"}, status=401)

        assert await ctx.session.restore() is False
        assert ctx.token_store.get() is None

    @pytest.mark.asyncio
    async def test_malformed_refresh_body_raises_api_error(self, ctx, transport):
        transport.reply("POST", "/auth/refresh", {"ok": True, "access_token": ["not", "a", "token"]})

        with pytest.raises(ApiError) as exc:
            await ctx.session.refresh()

        assert exc.value.code == "API_ERROR"
        assert ctx.token_store.get() is None

    @pytest.mark.asyncio
    async def test_restore_with_malformed_refresh_body(self, ctx, transport):
        ctx.token_store.clear()
        transport.reply("POST", "/auth/refresh", {"ok": True, "access_token": {"nested": "value"}})

        assert await ctx.session.restore() is False
        assert ctx.token_store.status == AuthStatus.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_malformed_profile_raises_api_error(self, ctx, transport):
        transport.reply("GET", "/auth/me", {"ok": True, "user": ["not", "a", "profile"]})

        with pytest.raises(ApiError):
            await ctx.session.me()

    @pytest.mark.asyncio
    async def test_non_auth_errors_do_not_refresh(self, ctx, transport):
        transport.reply("GET", "/auth/me", {"message": "down"}, status=502)

        with pytest.raises(HttpError) as exc:
            await ctx.session.me()

        assert exc.value.status == 502
        assert transport.count("POST", "/auth/refresh") == 0
        assert ctx.token_store.get_token() == "token-1"
