"""
Unified Run Configuration
=========================
Single source of truth for ALL agent defaults and runtime limits.

Every module (CLI, session manager, crawl engine, retrieval, validator)
reads from this object.  CLI flags and environment variables populate it.

This eliminates duplicated magic numbers across the codebase.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defaults for every tunable
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Session
    "session_staleness_s": 50.0,      # skip re-auth if checked within this window
    "verification_wait_s": 120.0,     # bounded wait on an email challenge
    "verification_poll_s": 10.0,
    "login_timeout_ms": 60_000,
    "login_step_wait_s": 5.0,         # wait after each login step
    # Crawl
    "settle_delay_s": 5.0,            # wait for render settle after goto / scroll
    "item_delay_s": 0.0,              # pause between item extractions
    "max_iterations": 10_000,         # pagination safety valve
    # Retrieval
    "storage_retries": 3,
    "gateway_attempts": 3,
    "retry_delay_s": 3.0,
    "request_timeout_s": 30.0,
    # Validation
    "sample_size": 2,
    "sample_delay_s": 30.0,
    # Browser
    "headless": True,
    "viewport_width": 1024,
    "viewport_height": 4000,
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    # Rounds
    "round_length_s": 600.0,
    "retain_rounds": 2,               # rounds kept before the last published one
    # Paths / services
    "data_dir": "data",
    "artifact_name": "dataList.json",
    "keyword_url": "http://localhost:3000/keywords",
    "storage_api_url": "",
}

_DEFAULT_GATEWAYS = [
    "https://{cid}.ipfs.w3s.link/{name}",
    "https://ipfs.io/ipfs/{cid}/{name}",
    "https://gateway.pinata.cloud/ipfs/{cid}/{name}",
    "https://cloudflare-ipfs.com/ipfs/{cid}/{name}",
]

# Env-var prefixes checked in order for credentials
_CREDENTIAL_PREFIXES = ("TWITTER", "CRAWLER")


@dataclass
class AgentRunConfig:
    """
    Unified configuration consumed by every agent subsystem.

    Populate via:
      - ``AgentRunConfig()``                → all defaults
      - ``AgentRunConfig(settle_delay_s=0)`` → override one value
      - ``AgentRunConfig.from_env()``       → from environment variables
      - ``AgentRunConfig.from_cli_args(ns)`` → from argparse Namespace
    """

    # ---- Session ----
    session_staleness_s: float = _DEFAULTS["session_staleness_s"]
    verification_wait_s: float = _DEFAULTS["verification_wait_s"]
    verification_poll_s: float = _DEFAULTS["verification_poll_s"]
    login_timeout_ms: int = _DEFAULTS["login_timeout_ms"]
    login_step_wait_s: float = _DEFAULTS["login_step_wait_s"]

    # ---- Crawl ----
    settle_delay_s: float = _DEFAULTS["settle_delay_s"]
    item_delay_s: float = _DEFAULTS["item_delay_s"]
    max_iterations: int = _DEFAULTS["max_iterations"]

    # ---- Retrieval ----
    gateways: List[str] = field(default_factory=lambda: list(_DEFAULT_GATEWAYS))
    storage_retries: int = _DEFAULTS["storage_retries"]
    gateway_attempts: int = _DEFAULTS["gateway_attempts"]
    retry_delay_s: float = _DEFAULTS["retry_delay_s"]
    request_timeout_s: float = _DEFAULTS["request_timeout_s"]

    # ---- Validation ----
    sample_size: int = _DEFAULTS["sample_size"]
    sample_delay_s: float = _DEFAULTS["sample_delay_s"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    viewport_width: int = _DEFAULTS["viewport_width"]
    viewport_height: int = _DEFAULTS["viewport_height"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Rounds ----
    round_length_s: float = _DEFAULTS["round_length_s"]
    retain_rounds: int = _DEFAULTS["retain_rounds"]

    # ---- Paths / services ----
    data_dir: str = _DEFAULTS["data_dir"]
    artifact_name: str = _DEFAULTS["artifact_name"]
    keyword_url: str = _DEFAULTS["keyword_url"]
    storage_api_url: str = _DEFAULTS["storage_api_url"]
    storage_token: Optional[str] = None

    # ---- Authentication ----
    username: Optional[str] = None
    password: Optional[str] = None
    verification: Optional[str] = None

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, **overrides) -> "AgentRunConfig":
        """Build config from ``ROUNDCRAWLER_*`` environment variables.

        Call ``dotenv.load_dotenv()`` first if a ``.env`` file should apply.
        """
        env = os.environ
        cfg = cls(
            data_dir=env.get("ROUNDCRAWLER_DATA_DIR", _DEFAULTS["data_dir"]),
            keyword_url=env.get("ROUNDCRAWLER_KEYWORD_URL", _DEFAULTS["keyword_url"]),
            storage_api_url=env.get("ROUNDCRAWLER_STORAGE_API_URL", _DEFAULTS["storage_api_url"]),
            storage_token=env.get("ROUNDCRAWLER_STORAGE_TOKEN") or None,
            headless=env.get("ROUNDCRAWLER_HEADLESS", "1").lower() not in ("0", "false", "no"),
        )
        gateways = env.get("ROUNDCRAWLER_GATEWAYS", "")
        if gateways:
            cfg.gateways = [g.strip() for g in gateways.split(",") if g.strip()]
        for key, value in overrides.items():
            setattr(cfg, key, value)
        cfg.resolve_credentials()
        return cfg

    @classmethod
    def from_cli_args(cls, args) -> "AgentRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        cfg = cls.from_env()
        if getattr(args, "data_dir", None):
            cfg.data_dir = args.data_dir
        if getattr(args, "round_length", None):
            cfg.round_length_s = float(args.round_length)
        if getattr(args, "max_iterations", None):
            cfg.max_iterations = int(args.max_iterations)
        if getattr(args, "headful", False):
            cfg.headless = False
        if getattr(args, "sample_delay", None) is not None:
            cfg.sample_delay_s = float(args.sample_delay)
        return cfg

    def resolve_credentials(self) -> None:
        """Resolve credentials from environment variables if not set directly.

        Env vars checked (in order):
            ``TWITTER_USERNAME`` / ``CRAWLER_USERNAME``
            ``TWITTER_PASSWORD`` / ``CRAWLER_PASSWORD``
            ``TWITTER_VERIFICATION`` / ``CRAWLER_VERIFICATION``
        """
        for prefix in _CREDENTIAL_PREFIXES:
            if not self.username:
                self.username = os.environ.get(f"{prefix}_USERNAME") or None
            if not self.password:
                self.password = os.environ.get(f"{prefix}_PASSWORD") or None
            if not self.verification:
                self.verification = os.environ.get(f"{prefix}_VERIFICATION") or None

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def viewport(self) -> dict:
        return {'width': self.viewport_width, 'height': self.viewport_height}

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("AGENT RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Data Dir:         {self.data_dir}")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Session Window:   {self.session_staleness_s}s")
        logger.info(f"  Settle Delay:     {self.settle_delay_s}s")
        logger.info(f"  Max Iterations:   {self.max_iterations}")
        logger.info(f"  Gateways:         {len(self.gateways)} configured")
        logger.info(f"  Retries:          {self.gateway_attempts} x {self.retry_delay_s}s")
        logger.info(f"  Samples:          {self.sample_size} (delay {self.sample_delay_s}s)")
        logger.info(f"  Keyword Service:  {self.keyword_url}")
        if self.storage_api_url:
            logger.info(f"  Storage API:      {self.storage_api_url}")
        if self.username:
            logger.info(f"  Auth:             Enabled (credentials resolved)")
        logger.info("=" * 60)
