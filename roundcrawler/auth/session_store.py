"""
Session Store
=============
Persists the browser cookies of an authenticated session so the next
negotiation can skip the interactive login.

Responsibilities:
    1. Save cookies after login (upsert: create once, update afterwards)
    2. Load saved cookies for replay into a new browser context
    3. Validate freshness (age, cookie presence)

Cookies live in the key-value store under a single document
``{"id": "cookies", "data": [...], "saved_at": <epoch>}``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from ..kv_store import KeyValueStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings
# ---------------------------------------------------------------------------

_COLLECTION = "cookies"
_DOC_ID = "cookies"
_MAX_SESSION_AGE_HOURS = 24 * 7


class SessionStore:
    """Loads and saves session cookies through the key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_age_hours: float = _MAX_SESSION_AGE_HOURS,
        clock=time.time,
    ):
        """
        Args:
            store:         Backing key-value store.
            max_age_hours: Saved cookies older than this are ignored.
            clock:         Time source (epoch seconds).
        """
        self.store = store
        self.max_age_hours = max_age_hours
        self.clock = clock

    async def load(self) -> Optional[List[Dict[str, Any]]]:
        """Return saved cookies, or None if missing, empty or too old."""
        doc = await self.store.find_one(_COLLECTION, id=_DOC_ID)
        if not doc:
            logger.info("[SESSION] No saved cookies found")
            return None

        cookies = doc.get("data") or []
        if not cookies:
            logger.info("[SESSION] Saved cookie set is empty — stale")
            return None

        age_hours = (self.clock() - float(doc.get("saved_at") or 0)) / 3600
        if age_hours > self.max_age_hours:
            logger.info(
                f"[SESSION] Saved cookies are {age_hours:.1f}h old — expired "
                f"(max {self.max_age_hours}h)"
            )
            return None

        logger.info(f"[SESSION] Saved cookies: {len(cookies)} cookies, age {age_hours:.1f}h")
        return cookies

    async def save(self, cookies: List[Dict[str, Any]]) -> bool:
        """Upsert the cookie set.  Returns False (logged) on failure."""
        try:
            await self.store.upsert(_COLLECTION, {
                "id": _DOC_ID,
                "data": list(cookies),
                "saved_at": self.clock(),
            })
            logger.info(f"[SESSION] Saved {len(cookies)} cookies")
            return True
        except Exception as e:
            logger.error(f"[SESSION] Error saving cookies: {e}")
            return False

    async def clear(self) -> None:
        await self.store.remove(_COLLECTION, _DOC_ID)
