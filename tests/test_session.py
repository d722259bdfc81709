"""
Tests for auth/session_manager.py and auth/session_store.py.

Covers:
  1. Cookie persistence (save / load / expiry)
  2. Login paths: stored cookies, interactive, password rejected
  3. Verification challenge: cleared in time vs. terminal state
  4. Freshness window and invalidation
  5. Exclusive browser access and idempotent release
"""

import asyncio

import pytest

from fakes import FakeClock, FakeSite, make_session
from roundcrawler.auth import SessionState, SessionStore
from roundcrawler.errors import SessionError, VerificationRequiredError
from roundcrawler.kv_store import JsonKeyValueStore


COOKIES = [{'name': 'auth_token', 'value': 'saved', 'domain': 'feed.test', 'path': '/'}]


# ====================================================================
# 1. Cookie persistence
# ====================================================================

class TestSessionStore:

    def test_save_then_load(self, tmp_path):
        async def scenario():
            store = SessionStore(JsonKeyValueStore(str(tmp_path)), clock=FakeClock())
            saved = await store.save(COOKIES)
            return saved, await store.load()
        saved, loaded = asyncio.run(scenario())
        assert saved is True
        assert loaded == COOKIES

    def test_save_twice_updates_single_document(self, tmp_path):
        async def scenario():
            kv = JsonKeyValueStore(str(tmp_path))
            store = SessionStore(kv, clock=FakeClock())
            await store.save(COOKIES)
            await store.save(COOKIES + COOKIES)
            return await kv.find("cookies")
        docs = asyncio.run(scenario())
        assert len(docs) == 1
        assert len(docs[0]['data']) == 2

    def test_expired_cookies_ignored(self, tmp_path):
        async def scenario():
            clock = FakeClock(0.0)
            store = SessionStore(JsonKeyValueStore(str(tmp_path)), max_age_hours=1, clock=clock)
            await store.save(COOKIES)
            clock.now = 2 * 3600
            return await store.load()
        assert asyncio.run(scenario()) is None

    def test_missing_and_empty(self, tmp_path):
        async def scenario():
            store = SessionStore(JsonKeyValueStore(str(tmp_path)), clock=FakeClock())
            missing = await store.load()
            await store.save([])
            return missing, await store.load()
        assert asyncio.run(scenario()) == (None, None)


# ====================================================================
# 2. Login paths
# ====================================================================

class TestLogin:

    def test_interactive_login_saves_cookies(self, tmp_path):
        async def scenario():
            site = FakeSite()
            kv = JsonKeyValueStore(str(tmp_path))
            session, factory = make_session(site, kv)
            ok = await session.ensure_session()
            return ok, session, site, factory, await SessionStore(kv, clock=FakeClock()).load()
        ok, session, site, factory, saved = asyncio.run(scenario())
        assert ok is True
        assert session.state is SessionState.AUTHENTICATED
        assert site.identifier_entered == "alice"
        assert len(factory.handles) == 1
        assert saved == site.issued_cookies

    def test_stored_cookies_skip_interactive_login(self, tmp_path):
        async def scenario():
            site = FakeSite(cookies_valid=True)
            kv = JsonKeyValueStore(str(tmp_path))
            await SessionStore(kv, clock=FakeClock()).save(COOKIES)
            session, factory = make_session(site, kv)
            ok = await session.ensure_session()
            return ok, session, site, factory
        ok, session, site, factory = asyncio.run(scenario())
        assert ok is True
        assert session.is_authenticated
        assert site.identifier_entered is None
        assert factory.handles[0].context.added_cookies == COOKIES

    def test_rejected_cookies_fall_back_to_interactive(self, tmp_path):
        async def scenario():
            site = FakeSite(cookies_valid=False)
            kv = JsonKeyValueStore(str(tmp_path))
            await SessionStore(kv, clock=FakeClock()).save(COOKIES)
            session, _ = make_session(site, kv)
            return await session.ensure_session(), site
        ok, site = asyncio.run(scenario())
        assert ok is True
        assert site.identifier_entered == "alice"

    def test_password_rejected(self, tmp_path):
        async def scenario():
            site = FakeSite(password="right")
            session, factory = make_session(site, JsonKeyValueStore(str(tmp_path)), password="wrong")
            return await session.ensure_session(), session, factory
        ok, session, factory = asyncio.run(scenario())
        assert ok is False
        assert session.state is SessionState.NO_SESSION
        assert isinstance(session.last_error, SessionError)
        assert "password rejected" in str(session.last_error)
        assert factory.handles[0].closed

    def test_missing_credentials(self, tmp_path):
        async def scenario():
            session, _ = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)), password="")
            return await session.ensure_session(), session
        ok, session = asyncio.run(scenario())
        assert ok is False
        assert "credentials incomplete" in str(session.last_error)


# ====================================================================
# 3. Verification challenge
# ====================================================================

class TestVerification:

    def test_challenge_cleared_within_wait(self, tmp_path):
        async def scenario():
            site = FakeSite()
            site.challenge_checks = 2
            session, _ = make_session(
                site, JsonKeyValueStore(str(tmp_path)), verification_wait_s=60.0,
            )
            return await session.ensure_session(), session
        ok, session = asyncio.run(scenario())
        assert ok is True
        assert session.state is SessionState.AUTHENTICATED

    def test_unresolved_challenge_is_terminal(self, tmp_path):
        async def scenario():
            site = FakeSite()
            site.challenge_checks = 10 ** 6
            session, factory = make_session(site, JsonKeyValueStore(str(tmp_path)))
            first = await session.ensure_session()
            second = await session.ensure_session()
            negotiated = await session.negotiate()
            return first, second, negotiated, session, factory
        first, second, negotiated, session, factory = asyncio.run(scenario())
        assert (first, second, negotiated) == (False, False, False)
        assert session.state is SessionState.VERIFICATION_REQUIRED
        assert isinstance(session.last_error, VerificationRequiredError)
        assert len(factory.handles) == 1
        assert factory.handles[0].closed

    def test_reset_leaves_terminal_state(self, tmp_path):
        async def scenario():
            site = FakeSite()
            site.challenge_checks = 10 ** 6
            session, _ = make_session(site, JsonKeyValueStore(str(tmp_path)))
            await session.ensure_session()
            await session.release()
            still = session.state
            site.challenge_checks = 0
            session.reset()
            return still, await session.ensure_session(), session
        still, ok, session = asyncio.run(scenario())
        assert still is SessionState.VERIFICATION_REQUIRED
        assert ok is True
        assert session.state is SessionState.AUTHENTICATED


# ====================================================================
# 4. Freshness
# ====================================================================

class TestFreshness:

    def test_recent_check_skips_negotiation(self, tmp_path):
        async def scenario():
            clock = FakeClock(0.0)
            session, factory = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)), clock=clock)
            await session.ensure_session()
            clock.now = 49.0
            await session.ensure_session()
            return factory
        assert len(asyncio.run(scenario()).handles) == 1

    def test_stale_session_renegotiates(self, tmp_path):
        async def scenario():
            clock = FakeClock(0.0)
            session, factory = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)), clock=clock)
            await session.ensure_session()
            clock.now = 51.0
            ok = await session.ensure_session()
            return ok, factory
        ok, factory = asyncio.run(scenario())
        assert ok is True
        assert len(factory.handles) == 2
        assert factory.handles[0].closed
        assert not factory.handles[1].closed

    def test_mark_checked_extends_window(self, tmp_path):
        async def scenario():
            clock = FakeClock(0.0)
            session, factory = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)), clock=clock)
            await session.ensure_session()
            clock.now = 40.0
            session.mark_checked()
            clock.now = 80.0
            await session.ensure_session()
            return factory
        assert len(asyncio.run(scenario()).handles) == 1

    def test_invalidate_forces_renegotiation(self, tmp_path):
        async def scenario():
            session, factory = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)))
            await session.ensure_session()
            session.invalidate("redirected to login")
            assert session.state is SessionState.NO_SESSION
            await session.ensure_session()
            return factory
        assert len(asyncio.run(scenario()).handles) == 2


# ====================================================================
# 5. Browser access
# ====================================================================

class TestBrowserAccess:

    def test_use_without_browser_raises(self, tmp_path):
        async def scenario():
            session, _ = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)))
            async with session.use():
                pass
        with pytest.raises(SessionError):
            asyncio.run(scenario())

    def test_release_is_idempotent(self, tmp_path):
        async def scenario():
            session, factory = make_session(FakeSite(), JsonKeyValueStore(str(tmp_path)))
            await session.ensure_session()
            await session.release()
            await session.release()
            return session, factory
        session, factory = asyncio.run(scenario())
        assert session.state is SessionState.NO_SESSION
        assert factory.handles[0].browser.close_calls == 1
        assert factory.handles[0].context.closed
