"""
Validation Engine
=================
Decides whether a peer's published proof is genuine.

Steps:
    1. Retrieve the peer's artifact (RetrievalFallback).
    2. Check it is a list of ``{id, round, data}`` entries.
    3. Draw ``sample_size`` entries at random (with replacement).
    4. Re-fetch each sampled item live and compare it with what the peer
       claimed to have seen.

Equivalence of a claimed record and its live rendering:
    - ids are equal
    - author handles are equal
    - texts are equal after collapsing whitespace

Engagement counters and timestamps drift legitimately and are not
compared.

Fail-open rules (when the validator cannot tell, it passes) are kept in
one place, ``FailOpenPolicy``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .errors import ValidationError
from .models import Record
from .retrieval import RetrievalFallback, RetrievalStatus

logger = logging.getLogger(__name__)

LiveFetch = Callable[[str], Awaitable[Optional[Record]]]


@dataclass(frozen=True)
class FailOpenPolicy:
    """Outcomes for cases where the proof cannot be judged."""
    pass_when_unavailable: bool = True      # artifact unreachable / not found
    pass_on_unexpected_error: bool = True   # anything else that blows up
    pass_when_empty: bool = True            # artifact is an empty list
    pass_on_invalid_address: bool = True    # peer submitted something that is not a CID


DEFAULT_POLICY = FailOpenPolicy()


@dataclass
class ValidationVerdict:
    passed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.passed


def _collapse(text: str) -> str:
    return " ".join((text or "").split())


def records_match(claimed: Record, live: Record) -> bool:
    """True if *live* is an acceptable rendering of *claimed*."""
    return (
        claimed.id == live.id
        and claimed.author_handle == live.author_handle
        and _collapse(claimed.text) == _collapse(live.text)
    )


class ValidationEngine:
    """
    Sampled re-verification of a peer proof.

    Usage::

        engine = ValidationEngine(retrieval, live_fetcher.fetch)
        verdict = await engine.validate(cid)
        if verdict:
            ...
    """

    def __init__(
        self,
        retrieval: RetrievalFallback,
        live_fetch: LiveFetch,
        *,
        artifact_name: str = "dataList.json",
        sample_size: int = 2,
        sample_delay_s: float = 30.0,
        policy: FailOpenPolicy = DEFAULT_POLICY,
        rng: Optional[random.Random] = None,
    ):
        self.retrieval = retrieval
        self.live_fetch = live_fetch
        self.artifact_name = artifact_name
        self.sample_size = sample_size
        self.sample_delay_s = sample_delay_s
        self.policy = policy
        self.rng = rng or random.Random()

    async def validate(self, peer_address: str) -> ValidationVerdict:
        logger.info(f"[VALIDATE] Validating {peer_address}")
        try:
            verdict = await self._validate(peer_address)
        except ValidationError as e:
            verdict = ValidationVerdict(self.policy.pass_on_invalid_address, str(e))
        except Exception as e:
            logger.error(f"[VALIDATE] Unexpected error: {e}", exc_info=True)
            verdict = ValidationVerdict(
                self.policy.pass_on_unexpected_error, f"unexpected error: {e}"
            )

        logger.info(
            f"[VALIDATE] {peer_address}: {'PASS' if verdict else 'FAIL'}"
            + (f" ({verdict.reason})" if verdict.reason else "")
        )
        return verdict

    # ── Internal ──────────────────────────────────────────────────

    async def _validate(self, peer_address: str) -> ValidationVerdict:
        result = await self.retrieval.fetch(peer_address, self.artifact_name)

        if result.status in (RetrievalStatus.UNAVAILABLE, RetrievalStatus.NOT_FOUND):
            return ValidationVerdict(
                self.policy.pass_when_unavailable, f"artifact {result.status.value}"
            )
        if result.status is RetrievalStatus.MALFORMED:
            return ValidationVerdict(False, "artifact is not valid JSON")

        entries = result.data
        if not isinstance(entries, list):
            return ValidationVerdict(False, "artifact is not a list")
        if not entries:
            return ValidationVerdict(self.policy.pass_when_empty, "artifact is empty")

        for n in range(self.sample_size):
            entry = self.rng.choice(entries)
            reason = await self._check_sample(entry)
            if reason:
                logger.warning(f"[VALIDATE] Sample {n + 1}/{self.sample_size} failed: {reason}")
                return ValidationVerdict(False, reason)

        return ValidationVerdict(True)

    async def _check_sample(self, entry: Any) -> str:
        """Return a failure reason, or an empty string if the sample holds."""
        record_id = entry.get('id') if isinstance(entry, dict) else None
        if not record_id:
            return "sample has no id"

        try:
            claimed = Record.from_dict(entry.get('data'))
        except (ValueError, TypeError) as e:
            return f"sample {record_id} has invalid data: {e}"

        if self.sample_delay_s > 0:
            await asyncio.sleep(self.sample_delay_s)

        live = await self.live_fetch(str(record_id))
        if live is None:
            return f"item {record_id} not found live"
        if not records_match(claimed, live):
            return f"item {record_id} does not match live rendering"
        logger.debug(f"[VALIDATE] Sample {record_id} verified")
        return ""
