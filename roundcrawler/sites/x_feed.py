"""
X Feed Adapter
==============
Concrete ``SiteAdapter`` for the X (Twitter) live search feed.

Handles:
    - Multi-step login (username → optional identity check → password)
    - Email verification challenge detection
    - "Something went wrong" rate-limit notice detection
    - Item collection and infinite-scroll pagination

Selectors here track the site's markup and are expected to drift.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional
from urllib.parse import quote

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ..extractor import ContentExtractor
from ..models import Record
from .base import Credentials, SiteAdapter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Markup and phrases
# ---------------------------------------------------------------------------

_USERNAME_SELECTOR = 'input[autocomplete="username"]'
_IDENTITY_CHECK_SELECTOR = 'input[data-testid="ocfEnterTextTextInput"]'
_PASSWORD_SELECTOR = 'input[name="password"]'
_ITEM_SELECTOR = 'article[aria-labelledby]'
_NOTICE_SELECTOR = 'div[dir="ltr"]'

RATE_LIMIT_PHRASE = "Something went wrong. Try reloading."
EMAIL_VERIFICATION_PHRASE = (
    "Verify your identity by entering the email address associated with your X account."
)


class XFeedAdapter(SiteAdapter):
    """X / Twitter live search."""

    def __init__(
        self,
        extractor: Optional[ContentExtractor] = None,
        *,
        base_url: str = "https://x.com",
        login_timeout_ms: int = 60_000,
        step_wait_s: float = 5.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.extractor = extractor or ContentExtractor(site_url=self.base_url)
        self.login_timeout_ms = login_timeout_ms
        self.step_wait_s = step_wait_s

    # ── Identity ──────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return "X"

    @property
    def home_url(self) -> str:
        return f"{self.base_url}/home"

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/i/flow/login"

    @property
    def login_redirect_url(self) -> str:
        return f"{self.base_url}/i/flow/login?redirect_after_login=%2Fhome"

    def search_url(self, search_term: str) -> str:
        return f"{self.base_url}/search?q={quote(search_term, safe='')}&src=typed_query&f=live"

    def item_url(self, item_id: str) -> str:
        return f"{self.base_url}/i/status/{item_id}"

    # ── Login flow ────────────────────────────────────────────────

    async def enter_identifier(self, page: Page, creds: Credentials) -> None:
        logger.info(f"[{self.name}] Step: go to login page")
        await page.goto(self.login_url, timeout=self.login_timeout_ms)

        logger.info(f"[{self.name}] Step: fill in username")
        await page.wait_for_selector(_USERNAME_SELECTOR, timeout=self.login_timeout_ms)
        await page.fill(_USERNAME_SELECTOR, creds.username)
        await page.keyboard.press("Enter")

        # Optional "confirm your identity" step
        try:
            await page.wait_for_selector(
                _IDENTITY_CHECK_SELECTOR, timeout=5_000, state="visible"
            )
        except PlaywrightTimeout:
            return
        logger.info(f"[{self.name}] Step: identity check")
        await page.fill(_IDENTITY_CHECK_SELECTOR, creds.verification or creds.username)
        await page.keyboard.press("Enter")

    async def enter_password(self, page: Page, creds: Credentials) -> None:
        logger.info(f"[{self.name}] Step: fill in password")
        await page.wait_for_selector(_PASSWORD_SELECTOR, timeout=self.login_timeout_ms)
        await page.fill(_PASSWORD_SELECTOR, creds.password)
        await page.keyboard.press("Enter")
        if self.step_wait_s > 0:
            await asyncio.sleep(self.step_wait_s)

    async def has_verification_challenge(self, page: Page) -> bool:
        text = await page.evaluate("() => document.body ? document.body.textContent : ''")
        return EMAIL_VERIFICATION_PHRASE in (text or "")

    # ── Page helpers ──────────────────────────────────────────────

    async def has_rate_limit_notice(self, page: Page) -> bool:
        return await page.evaluate(
            """(args) => {
                const [selector, phrase] = args;
                for (const el of document.querySelectorAll(selector)) {
                    if (el.textContent === phrase) return true;
                }
                return false;
            }""",
            [_NOTICE_SELECTOR, RATE_LIMIT_PHRASE],
        )

    async def collect_fragments(self, page: Page) -> List[str]:
        return await page.evaluate(
            """(selector) => Array.from(document.querySelectorAll(selector))
                                 .map(el => el.outerHTML)""",
            _ITEM_SELECTOR,
        )

    async def scroll(self, page: Page) -> None:
        await page.evaluate("() => window.scrollBy(0, window.innerHeight)")

    # ── Extraction ────────────────────────────────────────────────

    def extract_item(self, html: str, search_term: str = "") -> Optional[Record]:
        return self.extractor.extract(html, search_term)
