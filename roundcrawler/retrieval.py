"""
Retrieval Fallback
==================
Resilient fetch of a JSON artifact by content address.

Order of sources:
    1. the primary ``ContentStorageClient`` (``storage_retries`` attempts)
    2. each fallback gateway URL template, in order
       (``gateway_attempts`` attempts each)

A fixed ``retry_delay_s`` sleep separates attempts on the same source.
The first successful, parseable response wins; remaining sources are not
contacted.  When everything fails the result says why, as precisely as
the failures allow:
    - MALFORMED    every source served the same unparseable bytes
    - NOT_FOUND    every source answered "not found"
    - UNAVAILABLE  anything else (a single gateway's error page included)
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import aiohttp

from .errors import (
    ArtifactNotFoundError,
    MalformedArtifactError,
    StorageRetrievalError,
    ValidationError,
)
from .storage import ContentStorageClient, is_valid_cid

logger = logging.getLogger(__name__)

GatewayFetcher = Callable[[str], Awaitable[bytes]]


class RetrievalStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"


@dataclass
class RetrievalResult:
    status: RetrievalStatus
    data: Any = None
    source: str = ""

    @property
    def ok(self) -> bool:
        return self.status is RetrievalStatus.OK


def _parse_json(blob) -> Any:
    try:
        text = blob.decode('utf-8') if isinstance(blob, (bytes, bytearray)) else str(blob)
        return json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedArtifactError(f"artifact is not valid JSON: {e}") from e


def _summarize(statuses: List[RetrievalStatus], bad_bodies: List[bytes]) -> RetrievalStatus:
    if (
        statuses
        and all(s is RetrievalStatus.MALFORMED for s in statuses)
        and len(set(bad_bodies)) == 1
    ):
        return RetrievalStatus.MALFORMED
    if statuses and all(s is RetrievalStatus.NOT_FOUND for s in statuses):
        return RetrievalStatus.NOT_FOUND
    return RetrievalStatus.UNAVAILABLE


class RetrievalFallback:
    """Primary client first, then public gateways."""

    def __init__(
        self,
        client: ContentStorageClient,
        gateways: List[str],
        *,
        storage_retries: int = 3,
        gateway_attempts: int = 3,
        retry_delay_s: float = 3.0,
        timeout_s: float = 30.0,
        gateway_fetcher: Optional[GatewayFetcher] = None,
    ):
        """
        Args:
            client:           Primary storage client.
            gateways:         URL templates with ``{cid}`` and ``{name}`` placeholders.
            storage_retries:  Attempts against the primary client.
            gateway_attempts: Attempts per gateway.
            retry_delay_s:    Fixed delay between attempts on one source.
            timeout_s:        Per-request timeout for gateway GETs.
            gateway_fetcher:  Override for the gateway GET (tests).
        """
        self.client = client
        self.gateways = list(gateways)
        self.storage_retries = storage_retries
        self.gateway_attempts = gateway_attempts
        self.retry_delay_s = retry_delay_s
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._gateway_fetcher = gateway_fetcher or self._http_get

    async def fetch(self, address: str, artifact_name: str) -> RetrievalResult:
        """Fetch and parse *artifact_name* from *address*.

        Raises:
            ValidationError: *address* is not a well-formed CID (no network call made).
        """
        if not is_valid_cid(address):
            logger.warning(f"[FETCH] Invalid CID: {address!r}")
            raise ValidationError(f"invalid content address: {address!r}")

        statuses: List[RetrievalStatus] = []
        bad_bodies: List[bytes] = []
        for label, getter, attempts in self._sources(address, artifact_name):
            status = RetrievalStatus.UNAVAILABLE
            bad_body = b""
            for attempt in range(1, attempts + 1):
                body = None
                try:
                    body = await getter()
                    data = _parse_json(body)
                    logger.info(f"[FETCH] {address}/{artifact_name} retrieved via {label}")
                    return RetrievalResult(RetrievalStatus.OK, data, label)
                except ArtifactNotFoundError as e:
                    status = RetrievalStatus.NOT_FOUND
                    error = e
                except MalformedArtifactError as e:
                    status = RetrievalStatus.MALFORMED
                    error = e
                    bad_body = bytes(body) if isinstance(body, (bytes, bytearray)) else str(body).encode()
                except Exception as e:
                    status = RetrievalStatus.UNAVAILABLE
                    error = e
                logger.warning(
                    f"[FETCH] Attempt {attempt}/{attempts} via {label} failed: {error}"
                )
                if attempt < attempts and self.retry_delay_s > 0:
                    await asyncio.sleep(self.retry_delay_s)
            statuses.append(status)
            if status is RetrievalStatus.MALFORMED:
                bad_bodies.append(bad_body)

        final = _summarize(statuses, bad_bodies)
        logger.error(
            f"[FETCH] {address}/{artifact_name} {final.value} after "
            f"{len(statuses)} sources"
        )
        return RetrievalResult(final)

    # ── Internal ──────────────────────────────────────────────────

    def _sources(
        self, address: str, artifact_name: str
    ) -> List[Tuple[str, Callable[[], Awaitable[bytes]], int]]:
        sources = [(
            "primary",
            lambda: self.client.get(address, artifact_name),
            self.storage_retries,
        )]
        for template in self.gateways:
            url = template.format(cid=address, name=artifact_name)
            sources.append((url, lambda url=url: self._gateway_fetcher(url), self.gateway_attempts))
        return sources

    async def _http_get(self, url: str) -> bytes:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url) as resp:
                if resp.status == 404:
                    raise ArtifactNotFoundError(f"HTTP 404 from {url}")
                if resp.status >= 400:
                    raise StorageRetrievalError(f"HTTP {resp.status} from {url}")
                return await resp.read()
