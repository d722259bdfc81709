"""
Round Agent
===========
Wires the components together and exposes the four task-level operations
a round-based host calls:

    start(round)         — pick a search term, log in, crawl in the background
    get_round_cid(round) — publish (or look up) the proof for a round
    validate(cid)        — judge a peer's proof
    stop()               — stop crawling and close the browser

Usage::

    config = AgentRunConfig.from_env()
    agent = RoundAgent.from_config(config, ClockRoundOracle(config.round_length_s))
    await agent.start(round_number)
    ...
    cid = await agent.get_round_cid(round_number)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .auth import SessionManager, SessionStore
from .browser import BrowserFactory, playwright_factory
from .crawl_engine import CrawlEngine, CrawlOutcome, CrawlQuery, LiveItemFetcher, RoundOracle
from .keywords import KeywordSource
from .kv_store import JsonKeyValueStore, KeyValueStore
from .publisher import ProofPublisher, PublishResult
from .retrieval import RetrievalFallback
from .round_store import RoundStore
from .run_config import AgentRunConfig
from .sites import Credentials, SiteAdapter, XFeedAdapter
from .storage import ContentStorageClient, HttpStorageClient
from .validator import ValidationEngine, ValidationVerdict

logger = logging.getLogger(__name__)


class RoundAgent:

    def __init__(
        self,
        config: AgentRunConfig,
        *,
        round_store: RoundStore,
        session: SessionManager,
        crawl_engine: CrawlEngine,
        publisher: ProofPublisher,
        validator: ValidationEngine,
        keywords: KeywordSource,
        node_key: str = "",
        stop_timeout_s: float = 30.0,
    ):
        self.config = config
        self.round_store = round_store
        self.session = session
        self.crawl_engine = crawl_engine
        self.publisher = publisher
        self.validator = validator
        self.keywords = keywords
        self.node_key = node_key
        self.stop_timeout_s = stop_timeout_s
        self._crawl_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: AgentRunConfig,
        round_oracle: RoundOracle,
        *,
        store: Optional[KeyValueStore] = None,
        storage: Optional[ContentStorageClient] = None,
        browser_factory: Optional[BrowserFactory] = None,
        adapter: Optional[SiteAdapter] = None,
        keywords: Optional[KeywordSource] = None,
        node_key: str = "",
    ) -> "RoundAgent":
        """Build the default component graph from *config*.

        Every collaborator can be swapped out; the defaults are the JSON
        store under ``config.data_dir``, the HTTP storage client, Chromium
        via Playwright and the X feed adapter.
        """
        store = store or JsonKeyValueStore(str(config.data_path / "db"))
        storage = storage or HttpStorageClient(
            config.storage_api_url,
            token=config.storage_token,
            timeout_s=config.request_timeout_s,
        )
        adapter = adapter or XFeedAdapter(
            login_timeout_ms=config.login_timeout_ms,
            step_wait_s=config.login_step_wait_s,
        )
        credentials = Credentials(
            username=config.username or "",
            password=config.password or "",
            verification=config.verification,
        )
        session = SessionManager(
            adapter,
            credentials,
            SessionStore(store),
            browser_factory or playwright_factory(config),
            staleness_s=config.session_staleness_s,
            verification_wait_s=config.verification_wait_s,
            verification_poll_s=config.verification_poll_s,
            settle_delay_s=config.settle_delay_s,
            navigation_timeout_ms=config.login_timeout_ms,
        )
        round_store = RoundStore(store)
        live = LiveItemFetcher(
            session, adapter,
            settle_delay_s=config.settle_delay_s,
            navigation_timeout_ms=config.login_timeout_ms,
        )
        retrieval = RetrievalFallback(
            storage,
            config.gateways,
            storage_retries=config.storage_retries,
            gateway_attempts=config.gateway_attempts,
            retry_delay_s=config.retry_delay_s,
            timeout_s=config.request_timeout_s,
        )
        return cls(
            config,
            round_store=round_store,
            session=session,
            crawl_engine=CrawlEngine(session, adapter, round_store, round_oracle, config),
            publisher=ProofPublisher(
                round_store, store, storage,
                data_dir=config.data_dir,
                artifact_name=config.artifact_name,
            ),
            validator=ValidationEngine(
                retrieval,
                live.fetch,
                artifact_name=config.artifact_name,
                sample_size=config.sample_size,
                sample_delay_s=config.sample_delay_s,
            ),
            keywords=keywords or KeywordSource(config.keyword_url),
            node_key=node_key,
        )

    @property
    def is_running(self) -> bool:
        return self._crawl_task is not None and not self._crawl_task.done()

    # ── Task operations ───────────────────────────────────────────

    async def start(self, round_number: int) -> asyncio.Task:
        """Assign a search term for the round, log in and launch the crawl.

        Returns the background task running ``CrawlEngine.crawl``; awaiting
        it yields the round's ``CrawlOutcome``.
        """
        if self.is_running:
            logger.warning("[AGENT] Crawl already running — stopping it first")
            await self.stop()

        term = await self.keywords.fetch(self.node_key)
        await self.round_store.record_search_term(round_number, term)
        await self.prune_published_rounds()

        if not await self.session.ensure_session():
            logger.warning(
                f"[AGENT] No session for round {round_number} "
                f"({self.session.state.value}); crawl will defer"
            )

        query = CrawlQuery(search_term=term, round=round_number)
        self._crawl_task = asyncio.create_task(self.crawl_engine.crawl(query))
        logger.info(f"[AGENT] Round {round_number} crawl started for {term!r}")
        return self._crawl_task

    async def prune_published_rounds(self) -> int:
        """Drop stored records of rounds well behind the last published one."""
        latest = await self.publisher.latest_published_round()
        if latest is None:
            return 0
        return await self.round_store.prune(latest - self.config.retain_rounds)

    async def get_round_cid(self, round_number: int) -> Optional[str]:
        result = await self.publish(round_number)
        logger.info(f"[AGENT] Round {round_number} CID: {result.content_address}")
        return result.content_address

    async def publish(self, round_number: int) -> PublishResult:
        return await self.publisher.publish(round_number)

    async def validate(self, peer_address: str) -> ValidationVerdict:
        return await self.validator.validate(peer_address)

    async def stop(self) -> Optional[CrawlOutcome]:
        """Stop the crawl (waiting up to ``stop_timeout_s``) and close the browser."""
        outcome = None
        task, self._crawl_task = self._crawl_task, None
        if task is not None:
            if not task.done():
                self.crawl_engine.stop()
            done, _ = await asyncio.wait({task}, timeout=self.stop_timeout_s)
            if done:
                outcome = task.result()
            else:
                logger.warning("[AGENT] Crawl did not stop in time — cancelling")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        await self.session.release()
        logger.info("[AGENT] Stopped")
        return outcome
