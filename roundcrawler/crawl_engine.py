"""
Crawl Engine
============
Drives one round of crawling: open the live search for the round's term,
then scroll until the round moves on or the source starts rate-limiting.

Loop, per iteration (the browser is held only while it is being driven):

    1. scan for the rate-limit notice
    2. collect rendered items → extract → RoundStore.add()
    3. ask the round oracle; stop if the round advanced
    4. scroll, wait for render settle
    5. stop if step 1 saw the rate-limit notice
    6. stop after ``max_iterations`` (safety valve)

Every exit releases the session's browser exactly once.  Whatever was
stored before an error stays in the RoundStore.

Also home of ``LiveItemFetcher``, the session-backed single-item fetch
used to re-verify peer proofs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .auth.session_manager import SessionManager
from .browser import BrowserHandle, settle
from .errors import SessionError
from .models import Record
from .round_store import RoundStore
from .run_config import AgentRunConfig
from .sites.base import SiteAdapter

logger = logging.getLogger(__name__)

RoundOracle = Callable[[], Awaitable[int]]


class StopReason(str, Enum):
    ROUND_ADVANCED = "round_advanced"
    RATE_LIMITED = "rate_limited"
    MAX_ITERATIONS = "max_iterations"
    SESSION_LOST = "session_lost"
    SESSION_DEFERRED = "session_deferred"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class CrawlQuery:
    """What to crawl this round."""
    search_term: str
    round: int
    query_url: str = ""       # empty → adapter.search_url(search_term)


@dataclass
class CrawlOutcome:
    """Result of one ``CrawlEngine.crawl()`` call."""
    round: int
    stop_reason: Optional[StopReason] = None
    iterations: int = 0
    items_seen: int = 0
    items_stored: int = 0
    items_skipped: int = 0
    elapsed_sec: float = 0.0
    error: str = ""

    def to_dict(self) -> dict:
        return {
            'round': self.round,
            'stop_reason': self.stop_reason.value if self.stop_reason else None,
            'iterations': self.iterations,
            'items_seen': self.items_seen,
            'items_stored': self.items_stored,
            'items_skipped': self.items_skipped,
            'elapsed_sec': round(self.elapsed_sec, 2),
            'error': self.error,
        }


class CrawlEngine:
    """
    Round-bounded pagination crawler.

    Usage::

        engine = CrawlEngine(session, adapter, round_store, oracle, config)
        outcome = await engine.crawl(CrawlQuery(search_term="web3", round=7))
    """

    def __init__(
        self,
        session: SessionManager,
        adapter: SiteAdapter,
        round_store: RoundStore,
        round_oracle: RoundOracle,
        config: AgentRunConfig = None,
    ):
        self.session = session
        self.adapter = adapter
        self.round_store = round_store
        self.round_oracle = round_oracle
        self.config = config or AgentRunConfig()
        self._stop_requested = False

    def stop(self) -> None:
        """Request graceful stop (checked once per iteration).

        Honoured by the running crawl, or by the next one if none is running yet.
        """
        self._stop_requested = True
        logger.info("[CRAWL] Stop requested")

    # ------------------------------------------------------------------
    # Main entry
    # ------------------------------------------------------------------

    async def crawl(self, query: CrawlQuery) -> CrawlOutcome:
        """Crawl *query* until a termination signal.  Never raises."""
        outcome = CrawlOutcome(round=query.round)

        if not self.session.is_authenticated:
            logger.info("[CRAWL] No authenticated session — negotiating, crawl deferred")
            await self.session.negotiate()
            outcome.stop_reason = StopReason.SESSION_DEFERRED
            self._stop_requested = False
            return outcome

        url = query.query_url or self.adapter.search_url(query.search_term)
        start = time.time()

        logger.info("=" * 65)
        logger.info("CRAWL STARTED")
        logger.info(f"Round: {query.round}")
        logger.info(f"Search term: {query.search_term!r}")
        logger.info(f"URL: {url}")
        logger.info("=" * 65)

        try:
            async with self.session.use() as handle:
                await handle.page.goto(url, timeout=self.config.login_timeout_ms)
                await settle(handle.page, self.config.settle_delay_s)

            outcome.stop_reason = await self._paginate(query, outcome, handle)

        except Exception as e:
            outcome.stop_reason = StopReason.ERROR
            outcome.error = str(e)
            logger.error(f"[CRAWL] Fetching list stopped: {e}", exc_info=True)
        finally:
            await self.session.release()
            self._stop_requested = False
            outcome.elapsed_sec = time.time() - start

        logger.info(
            f"[CRAWL] Round {query.round} done — {outcome.stop_reason.value}: "
            f"{outcome.iterations} iterations, {outcome.items_stored} stored, "
            f"{outcome.items_skipped} skipped in {outcome.elapsed_sec:.1f}s"
        )
        return outcome

    # ------------------------------------------------------------------
    # Pagination loop
    # ------------------------------------------------------------------

    async def _paginate(
        self, query: CrawlQuery, outcome: CrawlOutcome, crawl_handle: BrowserHandle
    ) -> StopReason:
        # A renegotiated session opens a new browser on the home page; the
        # crawl cannot continue on it.
        while True:
            if self._stop_requested:
                return StopReason.STOPPED

            outcome.iterations += 1

            async with self.session.use() as handle:
                if handle is not crawl_handle:
                    logger.warning("[CRAWL] Browser was replaced during the crawl")
                    return StopReason.SESSION_LOST
                page = handle.page
                if page.url.startswith(self.adapter.login_url):
                    self.session.invalidate("redirected to login during crawl")
                    return StopReason.SESSION_LOST
                rate_limited = await self.adapter.has_rate_limit_notice(page)
                fragments = await self.adapter.collect_fragments(page)
                self.session.mark_checked()

            await self._store_fragments(fragments, query, outcome)

            if await self._round_advanced(query.round):
                logger.info("[CRAWL] Round changed — closing browser")
                return StopReason.ROUND_ADVANCED

            async with self.session.use() as handle:
                if handle is not crawl_handle:
                    logger.warning("[CRAWL] Browser was replaced during the crawl")
                    return StopReason.SESSION_LOST
                await self.adapter.scroll(handle.page)
                await settle(handle.page, self.config.settle_delay_s)

            if rate_limited:
                logger.warning("[CRAWL] Rate limit reached — waiting for next round")
                return StopReason.RATE_LIMITED

            if outcome.iterations >= self.config.max_iterations:
                logger.warning(
                    f"[CRAWL] MAX_ITERATIONS limit reached ({self.config.max_iterations})"
                )
                return StopReason.MAX_ITERATIONS

    async def _store_fragments(
        self, fragments: List[str], query: CrawlQuery, outcome: CrawlOutcome
    ) -> None:
        for fragment in fragments:
            if self.config.item_delay_s > 0:
                await asyncio.sleep(self.config.item_delay_s)
            outcome.items_seen += 1

            record = self.adapter.extract_item(fragment, query.search_term)
            if record is None or not record.id:
                outcome.items_skipped += 1
                continue

            result = await self.round_store.add(query.round, record)
            if result.stored:
                outcome.items_stored += 1
                logger.debug(f"[CRAWL] Stored {record.id} ({result.value})")

    async def _round_advanced(self, assigned_round: int) -> bool:
        try:
            current = await self.round_oracle()
        except Exception as e:
            logger.warning(f"[CRAWL] Round check error: {e}")
            return False
        return current != assigned_round


class LiveItemFetcher:
    """Fetches the current rendering of one item through the shared session.

    Uses a separate page in the session's browser context so an active
    crawl keeps its scroll position; the session lock keeps the two from
    driving the browser at the same time.
    """

    def __init__(
        self,
        session: SessionManager,
        adapter: SiteAdapter,
        *,
        settle_delay_s: float = 5.0,
        navigation_timeout_ms: int = 60_000,
    ):
        self.session = session
        self.adapter = adapter
        self.settle_delay_s = settle_delay_s
        self.navigation_timeout_ms = navigation_timeout_ms

    async def fetch(self, record_id: str) -> Optional[Record]:
        """Return the live Record for *record_id*, or None if not rendered.

        An open, authenticated browser is reused as is, even when stale, so
        a concurrent crawl keeps its page.

        Raises:
            SessionError: no authenticated session could be established, or
                the item page redirected to the login flow.
        """
        if not self.session.is_authenticated and not await self.session.ensure_session():
            raise SessionError("no authenticated session for live fetch")

        async with self.session.use() as handle:
            page = await handle.context.new_page()
            try:
                await page.goto(
                    self.adapter.item_url(record_id),
                    timeout=self.navigation_timeout_ms,
                )
                await settle(page, self.settle_delay_s)
                if page.url.startswith(self.adapter.login_url):
                    self.session.invalidate("redirected to login during live fetch")
                    raise SessionError(f"live fetch of {record_id} redirected to login")
                fragments = await self.adapter.collect_fragments(page)
            finally:
                await page.close()

        for fragment in fragments:
            record = self.adapter.extract_item(fragment)
            if record is not None and record.id == record_id:
                return record

        logger.info(f"[FETCH] Live item {record_id} not found ({len(fragments)} items rendered)")
        return None
