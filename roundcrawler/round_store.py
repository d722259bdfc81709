"""
Round Store
===========
Per-round, deduplicated collection of scraped Records, backed by the
key-value store.

Dedup policies:
    - ``FIRST_WINS``     — the first record seen for an id in a round stays;
                           later ones are rejected.
    - ``FRESHEST_WINS``  — a later record replaces the stored one only if its
                           ``posted_at`` is strictly newer; otherwise it is
                           dropped.  The replacement keeps the original
                           position in the round's ordering.

Once ProofPublisher has taken a snapshot of a round the round is frozen:
further ``add`` calls for it are rejected, so the published artifact and
the store never diverge.  The freeze is persisted, so it survives a
restart or a separate ``publish`` process.

Rounds that have been superseded are dropped with ``prune()``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Set

from .kv_store import KeyValueStore
from .models import Record

logger = logging.getLogger(__name__)

_RECORDS = "records"
_SEARCH_TERMS = "search_terms"
_FROZEN = "frozen_rounds"


class DedupPolicy(str, Enum):
    FIRST_WINS = "first_wins"
    FRESHEST_WINS = "freshest_wins"


class AddResult(str, Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    DUPLICATE = "duplicate"   # FIRST_WINS: id already present
    STALE = "stale"           # FRESHEST_WINS: not newer than the stored record
    FROZEN = "frozen"         # round already published

    @property
    def stored(self) -> bool:
        return self in (AddResult.INSERTED, AddResult.REPLACED)


def record_key(round_number: int, record_id: str) -> str:
    return f"{round_number}:{record_id}"


class RoundStore:
    """Dedup-on-id record collection per round."""

    def __init__(
        self,
        store: KeyValueStore,
        policy: DedupPolicy = DedupPolicy.FRESHEST_WINS,
    ):
        self.store = store
        self.policy = policy
        self._frozen: Set[int] = set()
        self._lock = asyncio.Lock()

    # ── Records ───────────────────────────────────────────────────

    async def add(self, round_number: int, record: Record) -> AddResult:
        """Insert *record* into *round_number* subject to the dedup policy."""
        async with self._lock:
            if await self.is_frozen(round_number):
                logger.warning(
                    f"[STORE] Round {round_number} is frozen — dropping {record.id}"
                )
                return AddResult.FROZEN

            key = record_key(round_number, record.id)
            existing = await self.store.find_one(_RECORDS, id=key)
            document = {'id': key, 'round': round_number, 'data': record.to_dict()}

            if existing is None:
                await self.store.insert(_RECORDS, document)
                logger.debug(f"[STORE] Stored {record.id} for round {round_number}")
                return AddResult.INSERTED

            if self.policy is DedupPolicy.FIRST_WINS:
                return AddResult.DUPLICATE

            previous = Record.from_dict(existing['data'])
            if record.freshness > previous.freshness:
                await self.store.upsert(_RECORDS, document)
                logger.debug(f"[STORE] Replaced {record.id} with newer observation")
                return AddResult.REPLACED
            return AddResult.STALE

    async def get(self, round_number: int, record_id: str) -> Optional[Record]:
        doc = await self.store.find_one(_RECORDS, id=record_key(round_number, record_id))
        return Record.from_dict(doc['data']) if doc else None

    async def records(self, round_number: int) -> List[Record]:
        """Records of a round in first-insertion order."""
        docs = await self.store.find(_RECORDS, round=round_number)
        return [Record.from_dict(d['data']) for d in docs]

    async def snapshot(self, round_number: int) -> List[Record]:
        """Freeze *round_number* and return its records."""
        async with self._lock:
            self._frozen.add(round_number)
            await self.store.upsert(_FROZEN, {
                'id': f"frozen:{round_number}",
                'round': round_number,
            })
            docs = await self.store.find(_RECORDS, round=round_number)
        logger.info(f"[STORE] Round {round_number} frozen with {len(docs)} records")
        return [Record.from_dict(d['data']) for d in docs]

    async def is_frozen(self, round_number: int) -> bool:
        if round_number in self._frozen:
            return True
        if await self.store.find_one(_FROZEN, round=round_number):
            self._frozen.add(round_number)
            return True
        return False

    async def prune(self, keep_from_round: int) -> int:
        """Drop records and search terms of rounds before *keep_from_round*.

        Freeze markers are kept.
        Returns the number of records removed.
        """
        async with self._lock:
            old_records = [
                d['id'] for d in await self.store.find(_RECORDS)
                if d.get('round', keep_from_round) < keep_from_round
            ]
            removed = await self.store.remove_many(_RECORDS, old_records)
            old_terms = [
                d['id'] for d in await self.store.find(_SEARCH_TERMS)
                if d.get('round', keep_from_round) < keep_from_round
            ]
            await self.store.remove_many(_SEARCH_TERMS, old_terms)
        if removed:
            logger.info(f"[STORE] Pruned {removed} records from rounds before {keep_from_round}")
        return removed

    # ── Search terms ──────────────────────────────────────────────

    async def record_search_term(self, round_number: int, search_term: str) -> None:
        await self.store.upsert(_SEARCH_TERMS, {
            'id': f"term:{round_number}",
            'round': round_number,
            'term': search_term,
        })
        logger.info(f"[STORE] Search term for round {round_number}: {search_term!r}")

    async def search_term_for(self, round_number: int) -> Optional[str]:
        doc = await self.store.find_one(_SEARCH_TERMS, round=round_number)
        return doc['term'] if doc else None
