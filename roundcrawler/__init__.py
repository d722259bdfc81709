"""
Round Crawler Package
A round-based crawl-and-validate agent: crawls a live search feed through an
authenticated browser session, publishes a content-addressed proof per round
and validates peers' proofs by sampled live re-verification.

CLI Usage:
    python -m roundcrawler <command> [options]

    Commands:
        run         Crawl rounds and publish a proof for each
        publish     Publish the proof for one round (--round R)
        validate    Validate a peer proof by CID
        keywords    Show the assigned search term
"""

from .agent import RoundAgent
from .auth import SessionManager, SessionState, SessionStore
from .crawl_engine import CrawlEngine, CrawlOutcome, CrawlQuery, LiveItemFetcher, StopReason
from .extractor import ContentExtractor
from .keywords import KeywordSource
from .kv_store import JsonKeyValueStore, KeyValueStore
from .models import Engagement, ProofRecord, Record
from .publisher import ProofPublisher, PublishResult, PublishStatus
from .retrieval import RetrievalFallback, RetrievalResult, RetrievalStatus
from .round_store import AddResult, DedupPolicy, RoundStore
from .rounds import ClockRoundOracle, StaticRoundOracle
from .run_config import AgentRunConfig
from .sites import Credentials, SiteAdapter, XFeedAdapter
from .storage import ContentStorageClient, HttpStorageClient, is_valid_cid
from .validator import FailOpenPolicy, ValidationEngine, ValidationVerdict

__all__ = [
    'RoundAgent',
    'AgentRunConfig',
    # Session
    'SessionManager',
    'SessionState',
    'SessionStore',
    'Credentials',
    'SiteAdapter',
    'XFeedAdapter',
    # Crawl
    'CrawlEngine',
    'CrawlQuery',
    'CrawlOutcome',
    'StopReason',
    'LiveItemFetcher',
    'ContentExtractor',
    'KeywordSource',
    'ClockRoundOracle',
    'StaticRoundOracle',
    # Data
    'Record',
    'Engagement',
    'ProofRecord',
    'KeyValueStore',
    'JsonKeyValueStore',
    'RoundStore',
    'DedupPolicy',
    'AddResult',
    # Proofs
    'ProofPublisher',
    'PublishResult',
    'PublishStatus',
    'ContentStorageClient',
    'HttpStorageClient',
    'is_valid_cid',
    'RetrievalFallback',
    'RetrievalResult',
    'RetrievalStatus',
    'ValidationEngine',
    'ValidationVerdict',
    'FailOpenPolicy',
]

__version__ = '1.0.0'
