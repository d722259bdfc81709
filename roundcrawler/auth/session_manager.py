"""
Session Manager
===============
Owns the browser session: lifecycle, cookie replay and the login state
machine.

States::

    NO_SESSION ──negotiate()──▶ AUTHENTICATING ──ok──▶ AUTHENTICATED
        ▲                              │                    │
        └────────── failure ───────────┘   stale / release / invalidate
                                       │
                                       └── email challenge ──▶ VERIFICATION_REQUIRED
                                                               (terminal until reset())

Responsibilities:
    1. ``ensure_session()`` — cheap check, negotiates only when stale.
    2. ``negotiate()`` — fresh browser, cookie replay, interactive login.
    3. Persist rotated cookies after every successful login.
    4. Lend the browser handle out under a lock (``use()``) so crawling and
       validation never drive the browser at the same time.

Security:
    - Credentials are never logged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from ..browser import BrowserFactory, BrowserHandle, settle
from ..errors import SessionError, VerificationRequiredError
from ..sites.base import Credentials, SiteAdapter
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    VERIFICATION_REQUIRED = "verification_required"


class SessionManager:
    """Manages the node's single authenticated browser session.

    Lifecycle::

        1. ``ensure_session()``
           → True at once if authenticated and checked < staleness window ago.
           → otherwise one ``negotiate()`` attempt.

        2. ``async with session.use() as handle:``
           → exclusive access to ``handle.page`` / ``handle.context``.

        3. ``mark_checked()`` / ``invalidate()``
           → called by the crawl loop as it observes the session working / failing.

        4. ``release()``
           → closes the browser; the next ``ensure_session()`` negotiates again.
    """

    def __init__(
        self,
        adapter: SiteAdapter,
        credentials: Credentials,
        session_store: SessionStore,
        browser_factory: BrowserFactory,
        *,
        staleness_s: float = 50.0,
        verification_wait_s: float = 120.0,
        verification_poll_s: float = 10.0,
        settle_delay_s: float = 5.0,
        navigation_timeout_ms: int = 60_000,
        clock=time.time,
    ):
        self.adapter = adapter
        self.credentials = credentials
        self.session_store = session_store
        self.browser_factory = browser_factory
        self.staleness_s = staleness_s
        self.verification_wait_s = verification_wait_s
        self.verification_poll_s = verification_poll_s
        self.settle_delay_s = settle_delay_s
        self.navigation_timeout_ms = navigation_timeout_ms
        self.clock = clock

        self.state = SessionState.NO_SESSION
        self.last_checked_at: float = 0.0
        self.cookies: List[Dict[str, Any]] = []
        self.last_error: Optional[SessionError] = None

        self._handle: Optional[BrowserHandle] = None
        self._lock = asyncio.Lock()

    # ── State ─────────────────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        return (
            self.state is SessionState.AUTHENTICATED
            and self._handle is not None
            and not self._handle.closed
        )

    @property
    def is_fresh(self) -> bool:
        return (
            self.is_authenticated
            and self.clock() - self.last_checked_at < self.staleness_s
        )

    def mark_checked(self) -> None:
        """Record that the session was just observed working."""
        if self.state is SessionState.AUTHENTICATED:
            self.last_checked_at = self.clock()

    def invalidate(self, reason: str = "") -> None:
        """Drop validity after a detected failure (e.g. login redirect)."""
        if self.state is SessionState.AUTHENTICATED:
            logger.warning(f"[SESSION] Session invalidated{': ' + reason if reason else ''}")
            self.state = SessionState.NO_SESSION

    def reset(self) -> None:
        """Leave ``VERIFICATION_REQUIRED`` once an operator has cleared the challenge."""
        if self.state is SessionState.VERIFICATION_REQUIRED:
            logger.info("[SESSION] Verification state reset by operator")
            self.state = SessionState.NO_SESSION
            self.last_error = None

    # ── Public API ────────────────────────────────────────────────

    async def ensure_session(self) -> bool:
        """Return True if a usable session exists, negotiating at most once."""
        async with self._lock:
            if self.is_fresh:
                return True
            if self.state is SessionState.VERIFICATION_REQUIRED:
                logger.error(
                    "[SESSION] Verification required — complete the challenge "
                    "and call reset() before negotiating again"
                )
                return False
            return await self._negotiate_locked()

    async def negotiate(self) -> bool:
        """Tear down any browser and establish a fresh authenticated session."""
        async with self._lock:
            if self.state is SessionState.VERIFICATION_REQUIRED:
                logger.error("[SESSION] Verification required — not negotiating")
                return False
            return await self._negotiate_locked()

    @asynccontextmanager
    async def use(self) -> AsyncIterator[BrowserHandle]:
        """Exclusive access to the open browser handle.

        Raises:
            SessionError: no browser is open.
        """
        async with self._lock:
            if self._handle is None or self._handle.closed:
                raise SessionError("no open browser session")
            yield self._handle

    async def release(self) -> None:
        """Close the browser (idempotent)."""
        async with self._lock:
            await self._close_handle()
            if self.state is not SessionState.VERIFICATION_REQUIRED:
                self.state = SessionState.NO_SESSION

    async def login_with_stored_cookies(self) -> bool:
        """Replay saved cookies and check the home page accepts them.

        Runs inside ``negotiate()`` on the freshly opened handle.  On
        success the (rotated) cookies are captured and persisted again.
        """
        if self._handle is None:
            raise SessionError("no open browser session")

        cookies = await self.session_store.load()
        if not cookies:
            return False

        page = self._handle.page
        await self._handle.context.add_cookies(cookies)
        await page.goto(self.adapter.home_url, timeout=self.navigation_timeout_ms)
        await settle(page, self.settle_delay_s)

        if self._is_login_redirect(page.url):
            logger.info("[SESSION] Stored cookies rejected — proceeding with interactive login")
            return False

        logger.info("[SESSION] Logged in using stored cookies")
        await self._capture_cookies()
        return True

    # ── Internal ──────────────────────────────────────────────────

    async def _negotiate_locked(self) -> bool:
        self.state = SessionState.AUTHENTICATING
        try:
            await self._close_handle()
            self._handle = await self.browser_factory()

            if not await self.login_with_stored_cookies():
                await self._interactive_login()
                await self._capture_cookies()

            self.state = SessionState.AUTHENTICATED
            self.last_checked_at = self.clock()
            self.last_error = None
            logger.info(f"[SESSION] {self.adapter.name} session established")
            return True

        except VerificationRequiredError as e:
            self.state = SessionState.VERIFICATION_REQUIRED
            self.last_error = e
            logger.error(f"[SESSION] {e}")
            await self._close_handle()
            return False
        except Exception as e:
            err = e if isinstance(e, SessionError) else SessionError(f"negotiation failed: {e}")
            self.state = SessionState.NO_SESSION
            self.last_error = err
            logger.error(f"[SESSION] Login error: {err}")
            await self._close_handle()
            return False

    async def _interactive_login(self) -> None:
        """Username → (identity check) → password, then classify the outcome.

        Raises:
            SessionError:              credentials missing or password rejected.
            VerificationRequiredError: email challenge not cleared in time.
        """
        if not self.credentials.is_complete:
            raise SessionError("credentials incomplete — set TWITTER_USERNAME / TWITTER_PASSWORD")

        page = self._handle.page
        await self.adapter.enter_identifier(page, self.credentials)

        url_before = page.url
        await self.adapter.enter_password(page, self.credentials)

        if page.url == url_before:
            raise SessionError("password rejected (URL unchanged after submit)")

        if await self.adapter.has_verification_challenge(page):
            await self._await_verification(page)

        await settle(page, self.settle_delay_s)
        logger.info("[SESSION] Interactive login successful")

    async def _await_verification(self, page) -> None:
        """Poll for the challenge to clear; give up after ``verification_wait_s``."""
        logger.warning(
            f"[SESSION] Email verification required — waiting up to "
            f"{self.verification_wait_s:.0f}s for it to be completed"
        )
        deadline = self.clock() + self.verification_wait_s
        while self.clock() < deadline:
            await asyncio.sleep(self.verification_poll_s)
            if not await self.adapter.has_verification_challenge(page):
                logger.info("[SESSION] Verification challenge cleared")
                return
        raise VerificationRequiredError(
            f"{self.adapter.name} requires email verification for "
            f"{self.credentials.username!r}; complete it in a browser, "
            f"then reset the session"
        )

    async def _capture_cookies(self) -> None:
        self.cookies = await self._handle.context.cookies()
        await self.session_store.save(self.cookies)

    def _is_login_redirect(self, url: str) -> bool:
        return url == self.adapter.login_redirect_url or url.startswith(self.adapter.login_url)

    async def _close_handle(self) -> None:
        if self._handle is not None:
            await self._handle.close()
            self._handle = None
