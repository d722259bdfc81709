"""
Keyword Source
==============
Picks the search term a node crawls in a round.

The keyword service assigns terms per node (``GET {url}?key=<node key>``).
When it is unreachable, a random entry of the bundled ``keywords.json``
is used instead.
"""

from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import List, Optional

import aiohttp

logger = logging.getLogger(__name__)

BUNDLED_KEYWORDS = Path(__file__).resolve().parent / "keywords.json"


def load_keywords(path: Path = BUNDLED_KEYWORDS) -> List[str]:
    with open(path, 'r', encoding='utf-8') as f:
        words = json.load(f)
    return [str(w) for w in words if str(w).strip()]


class KeywordSource:

    def __init__(
        self,
        service_url: str = "http://localhost:3000/keywords",
        *,
        fallback_path: Path = BUNDLED_KEYWORDS,
        timeout_s: float = 10.0,
        rng: Optional[random.Random] = None,
    ):
        self.service_url = service_url
        self.fallback_path = Path(fallback_path)
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.rng = rng or random.Random()

    async def fetch(self, node_key: str = "") -> str:
        """Return the search term for this node."""
        if self.service_url:
            try:
                keyword = await self._from_service(node_key)
                if keyword:
                    logger.info(f"[KEYWORDS] Assigned by service: {keyword!r}")
                    return keyword
                logger.warning("[KEYWORDS] Service returned no keyword")
            except Exception as e:
                logger.warning(f"[KEYWORDS] Service unavailable ({e})")

        keyword = self.rng.choice(load_keywords(self.fallback_path))
        logger.info(f"[KEYWORDS] Using local keyword: {keyword!r}")
        return keyword

    async def _from_service(self, node_key: str) -> str:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(self.service_url, params={'key': node_key}) as resp:
                resp.raise_for_status()
                body = await resp.text()
        return _keyword_from_body(body)


def _keyword_from_body(body: str) -> str:
    """The service answers with a bare string or a JSON string."""
    body = (body or "").strip()
    if not body:
        return ""
    try:
        value = json.loads(body)
    except ValueError:
        return body
    return value.strip() if isinstance(value, str) else ""
