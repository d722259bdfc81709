"""
Site Adapter (Abstract)
=======================
Defines the capabilities the agent needs from the one content source it
crawls: login steps, page helpers and item extraction.

To support another source:
    1. Create ``<source>.py`` inheriting from ``SiteAdapter``
    2. Implement all abstract methods
    3. Pass an instance to ``SessionManager`` and ``CrawlEngine``
    No changes to the session state machine or crawl loop are needed.

Design principles:
    - Selectors, URLs and challenge phrases live in the adapter only
    - The adapter holds no session state; SessionManager owns the browser
    - ``extract_item`` is pure and never raises
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from playwright.async_api import Page

from ..models import Record


# ---------------------------------------------------------------------------
# Credentials container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Credentials:
    """Plain credential container — resolved once at startup."""
    username: str = ""
    password: str = ""
    verification: Optional[str] = None
    """Answer for the "confirm your identity" step (phone / email)."""

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    def __repr__(self) -> str:
        # Never leak the password into logs or tracebacks
        return f"Credentials(username={self.username!r}, password='***')"


# ---------------------------------------------------------------------------
# Abstract adapter
# ---------------------------------------------------------------------------

class SiteAdapter(ABC):
    """Capability interface for one crawlable source.

    Subclasses MUST implement:
        - URL helpers:        ``home_url``, ``login_url``, ``login_redirect_url``,
                              ``search_url(term)``, ``item_url(item_id)``
        - login steps:        ``enter_identifier``, ``enter_password``,
                              ``has_verification_challenge``
        - page helpers:       ``has_rate_limit_notice``, ``collect_fragments``,
                              ``scroll``
        - extraction:         ``extract_item``
    """

    # ── Identity ──────────────────────────────────────────────────

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable source name (e.g. 'X')."""
        ...

    @property
    @abstractmethod
    def home_url(self) -> str:
        """Landing page that requires a logged-in session."""
        ...

    @property
    @abstractmethod
    def login_url(self) -> str:
        """Entry point of the interactive login flow."""
        ...

    @property
    @abstractmethod
    def login_redirect_url(self) -> str:
        """Where ``home_url`` redirects when the cookies are not accepted."""
        ...

    @abstractmethod
    def search_url(self, search_term: str) -> str:
        """Live search results URL for *search_term*."""
        ...

    @abstractmethod
    def item_url(self, item_id: str) -> str:
        """Canonical URL of a single item."""
        ...

    # ── Login flow ────────────────────────────────────────────────

    @abstractmethod
    async def enter_identifier(self, page: Page, creds: Credentials) -> None:
        """Navigate to the login page and submit the username.

        Handles the optional "confirm your identity" step that some
        sources insert between username and password.
        """
        ...

    @abstractmethod
    async def enter_password(self, page: Page, creds: Credentials) -> None:
        """Fill and submit the password field."""
        ...

    @abstractmethod
    async def has_verification_challenge(self, page: Page) -> bool:
        """True if the page asks for an out-of-band (email) verification."""
        ...

    # ── Page helpers ──────────────────────────────────────────────

    @abstractmethod
    async def has_rate_limit_notice(self, page: Page) -> bool:
        """True if the rendered page shows the source's rate-limit error."""
        ...

    @abstractmethod
    async def collect_fragments(self, page: Page) -> List[str]:
        """Outer HTML of every item currently rendered on *page*."""
        ...

    @abstractmethod
    async def scroll(self, page: Page) -> None:
        """Reveal the next batch of items."""
        ...

    # ── Extraction ────────────────────────────────────────────────

    @abstractmethod
    def extract_item(self, html: str, search_term: str = "") -> Optional[Record]:
        """Parse one fragment; None means skip."""
        ...
