"""
Content Extractor
=================
Turns the outer HTML of one rendered feed item into a ``Record``.

Pure: no browser, no I/O.  Advertisements and half-rendered items have no
author or no text and come back as ``None`` (skip) rather than an error.

Assumption (not validated): the four engagement counters are rendered in
the order comment, like, share, view.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .errors import ParseError
from .models import Engagement, Record

logger = logging.getLogger(__name__)

# lxml when installed, html.parser otherwise
try:
    import lxml  # noqa: F401
    _BS_PARSER = "lxml"
except ImportError:
    _BS_PARSER = "html.parser"
    logger.info("lxml not installed — using html.parser (slower but functional)")

_STATUS_RE = re.compile(r'/status/(\d+)')

# Hosts whose links point back into the feed itself
_SITE_HOSTS = {'twitter.com', 'www.twitter.com', 'x.com', 'www.x.com', 'mobile.twitter.com'}

# Link fragments that are navigation inside the feed, not outbound media
_SELF_LINK_MARKERS = ('/search?q=', '/hashtag/')


def parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 ``datetime`` attribute to epoch seconds.

    ``"2024-03-01T12:30:00.000Z"`` → ``1709296200``.  Naive values are
    taken as UTC.  Returns None for missing or unparseable input.
    """
    if not value:
        return None
    raw = value.strip()
    if raw.endswith('Z'):
        raw = raw[:-1] + '+00:00'
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        # Python < 3.11 rejects fractional seconds that are not 3 or 6 digits
        trimmed = re.sub(r'\.(\d+)', lambda m: '.' + m.group(1)[:6].ljust(6, '0'), raw)
        try:
            dt = datetime.fromisoformat(trimmed)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def normalize_text(text: str) -> str:
    """Normalize line endings and trim surrounding whitespace per line."""
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    lines = [line.strip() for line in text.split('\n')]
    return '\n'.join(lines).strip()


class ContentExtractor:
    """
    Extracts structured posts from feed item HTML.
    """

    ARTICLE_SELECTOR = 'article[data-testid="tweet"]'
    STATUS_LINK_SELECTOR = 'a[href*="/status/"]'
    USER_NAME_SELECTOR = 'div[data-testid="User-Name"]'
    AVATAR_SELECTORS = ('div[data-testid="Tweet-User-Avatar"] img', 'img[draggable="true"]')
    TEXT_SELECTOR = 'div[data-testid="tweetText"]'
    COUNTER_SELECTOR = 'span[data-testid="app-text-transition-container"]'

    def __init__(
        self,
        site_url: str = "https://x.com",
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            site_url: Base URL for resolving relative profile links
            clock: Source of ``observed_at`` timestamps
        """
        self.site_url = site_url
        self.clock = clock

    def extract(self, html: str, search_term: str = "") -> Optional[Record]:
        """Return a Record, or None if the item should be skipped."""
        try:
            return self.parse(html, search_term)
        except ParseError as e:
            logger.debug(f"[EXTRACT] Skipping item: {e}")
            return None
        except Exception as e:
            logger.debug(f"[EXTRACT] Skipping malformed item: {e}")
            return None

    def parse(self, html: str, search_term: str = "") -> Record:
        """Strict variant of ``extract``.

        Raises:
            ParseError: item has no status link, author or text.
        """
        if not html:
            raise ParseError("empty fragment")

        soup = BeautifulSoup(html, _BS_PARSER)
        article = soup.select_one(self.ARTICLE_SELECTOR) or soup

        record_id = self._extract_id(article)
        if not record_id:
            raise ParseError("no status link")

        author_name, author_handle, profile_href = self._extract_author(article)
        text_el = article.select_one(self.TEXT_SELECTOR)
        text = normalize_text(text_el.get_text()) if text_el else ""

        if not author_handle or not text:
            raise ParseError(f"item {record_id} has no author or text (advertisement?)")

        time_el = article.find('time')
        posted_at = parse_timestamp(time_el.get('datetime') if time_el else None)

        return Record(
            id=record_id,
            author_name=author_name,
            author_handle=author_handle,
            author_profile_url=urljoin(self.site_url, profile_href) if profile_href else "",
            avatar_url=self._extract_avatar(article),
            text=text,
            posted_at=posted_at,
            observed_at=self.clock(),
            engagement=self._extract_engagement(article),
            outbound_links=tuple(self._extract_links(text_el)) if text_el else (),
            search_term=search_term,
        )

    # ── Field helpers ─────────────────────────────────────────────

    def _extract_id(self, article) -> str:
        for link in article.select(self.STATUS_LINK_SELECTOR):
            match = _STATUS_RE.search(link.get('href', ''))
            if match:
                return match.group(1)
        return ""

    def _extract_author(self, article) -> Tuple[str, str, str]:
        """Return (display name, @handle, profile href)."""
        block = article.select_one(self.USER_NAME_SELECTOR)
        if block:
            links = block.select('a[role="link"]')
            name = links[0].get_text(' ', strip=True) if links else ""
            href = links[0].get('href', '') if links else ""
            handle = ""
            for s in block.find_all(string=True):
                s = s.strip()
                if s.startswith('@') and len(s) > 1:
                    handle = s
                    break
            if name.startswith('@'):
                name = ""
            return name, handle, href

        # Older markup: the handle link is not focusable, the name link is
        handle_el = article.select_one('a[tabindex="-1"]')
        handle = handle_el.get_text(strip=True) if handle_el else ""
        name_el = article.select_one('a[role="link"]')
        name = name_el.get_text(strip=True).split('@')[0] if name_el else ""
        href = name_el.get('href', '') if name_el else ""
        return name, handle, href

    def _extract_avatar(self, article) -> str:
        for selector in self.AVATAR_SELECTORS:
            img = article.select_one(selector)
            if img and img.get('src'):
                return img['src']
        return ""

    def _extract_engagement(self, article) -> Engagement:
        counters = [c.get_text(strip=True) for c in article.select(self.COUNTER_SELECTOR)]
        counters += [""] * (4 - len(counters))
        return Engagement(
            comment=counters[0],
            like=counters[1],
            share=counters[2],
            view=counters[3],
        )

    def _extract_links(self, text_el) -> List[Tuple[str, str]]:
        links = []
        for a in text_el.find_all('a'):
            href = a.get('href')
            if not href or self._is_self_link(href):
                continue
            label = re.sub(r'\s', '', a.get_text())
            links.append((label, href))
        return links

    @staticmethod
    def _is_self_link(href: str) -> bool:
        if any(marker in href for marker in _SELF_LINK_MARKERS):
            return True
        parsed = urlparse(href)
        if not parsed.netloc:
            # Relative link: mention / profile / in-feed navigation
            return True
        return parsed.netloc.lower() in _SITE_HOSTS
