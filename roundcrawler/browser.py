"""
Browser Handle
==============
The one browser resource a node owns: Playwright driver, browser,
context and the working page, bundled so they are opened and closed
together.

The handle is passed explicitly (SessionManager owns it and lends it out
through ``SessionManager.use()``).  ``close()`` is idempotent so every exit
path can call it without double-closing.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from .run_config import AgentRunConfig

logger = logging.getLogger(__name__)

# Resource types to block for speed
_BLOCKED_RESOURCE_TYPES = frozenset([
    "media", "font",
])

# URL patterns for analytics/tracking scripts to block
_BLOCKED_URL_PATTERNS = [
    re.compile(r"google[-_]?analytics", re.IGNORECASE),
    re.compile(r"googletagmanager", re.IGNORECASE),
    re.compile(r"doubleclick\.net", re.IGNORECASE),
]


class BrowserHandle:
    """Owned bundle of Playwright objects for one session."""

    def __init__(self, playwright, browser: Browser, context: BrowserContext, page: Page):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.closed = False

    async def close(self) -> None:
        """Close page, context, browser and driver (once)."""
        if self.closed:
            return
        self.closed = True

        if self.context:
            try:
                # Close all open pages first to prevent stale navigation futures
                for p in self.context.pages:
                    try:
                        await p.close()
                    except Exception:
                        pass
                await self.context.close()
            except Exception:
                pass
        if self.browser:
            try:
                await self.browser.close()
            except Exception:
                pass
        if self.playwright:
            try:
                await self.playwright.stop()
            except Exception:
                pass
        logger.info("[BROWSER] Browser closed")


BrowserFactory = Callable[[], Awaitable[BrowserHandle]]


async def _route_handler(route) -> None:
    """Block unnecessary resources for speed."""
    request = route.request
    if request.resource_type in _BLOCKED_RESOURCE_TYPES:
        await route.abort()
        return
    if request.resource_type == "script":
        for pattern in _BLOCKED_URL_PATTERNS:
            if pattern.search(request.url):
                await route.abort()
                return
    await route.continue_()


def playwright_factory(config: AgentRunConfig) -> BrowserFactory:
    """Return a factory that launches a fresh Chromium handle per call."""

    async def _open() -> BrowserHandle:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=config.headless,
                args=[
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--disable-gpu',
                    '--disable-dev-shm-usage',
                ],
            )
            context = await browser.new_context(
                user_agent=config.user_agent,
                viewport=config.viewport,
                locale='en-US',
            )
            await context.route("**/*", _route_handler)
            page = await context.new_page()
        except Exception:
            await playwright.stop()
            raise
        logger.info(
            f"[BROWSER] Chromium launched (headless={config.headless}, "
            f"viewport={config.viewport_width}x{config.viewport_height})"
        )
        return BrowserHandle(playwright, browser, context, page)

    return _open


async def settle(page: Page, delay_s: float) -> None:
    """Wait for the page to finish rendering after navigation or scroll."""
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=10_000)
    except Exception:
        pass
    if delay_s > 0:
        await asyncio.sleep(delay_s)
