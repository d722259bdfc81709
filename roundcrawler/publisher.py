"""
Proof Publisher
===============
Turns a round's records into a content-addressed proof.

``publish(round)`` is idempotent: once a ProofRecord exists for the round,
every later call returns it without touching storage.  The first call
freezes the round in the RoundStore, writes ``dataList.json`` under the
data directory, uploads it and records the returned CID.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import StorageUploadError
from .kv_store import KeyValueStore
from .models import ProofRecord, artifact_entry, proof_key
from .round_store import RoundStore
from .storage import ContentStorageClient

logger = logging.getLogger(__name__)

PROOFS = "proofs"


class PublishStatus(str, Enum):
    EXISTING = "existing"
    PUBLISHED = "published"
    NO_DATA = "no_data"
    UPLOAD_FAILED = "upload_failed"


@dataclass
class PublishResult:
    status: PublishStatus
    round: int
    content_address: Optional[str] = None


class ProofPublisher:

    def __init__(
        self,
        round_store: RoundStore,
        store: KeyValueStore,
        storage: ContentStorageClient,
        data_dir: str = "data",
        artifact_name: str = "dataList.json",
    ):
        self.round_store = round_store
        self.store = store
        self.storage = storage
        self.data_dir = Path(data_dir)
        self.artifact_name = artifact_name
        self._lock = asyncio.Lock()

    async def existing_proof(self, round_number: int) -> Optional[ProofRecord]:
        doc = await self.store.find_one(PROOFS, id=proof_key(round_number))
        return ProofRecord.from_dict(doc) if doc else None

    async def latest_published_round(self) -> Optional[int]:
        rounds = [d.get('round') for d in await self.store.find(PROOFS)]
        rounds = [r for r in rounds if isinstance(r, int)]
        return max(rounds) if rounds else None

    async def publish(self, round_number: int) -> PublishResult:
        async with self._lock:
            return await self._publish(round_number)

    async def _publish(self, round_number: int) -> PublishResult:
        existing = await self.existing_proof(round_number)
        if existing is not None:
            logger.info(
                f"[PROOF] Round {round_number} already published: {existing.content_address}"
            )
            return PublishResult(PublishStatus.EXISTING, round_number, existing.content_address)

        records = await self.round_store.snapshot(round_number)
        if not records:
            logger.info(f"[PROOF] No data for round {round_number}")
            return PublishResult(PublishStatus.NO_DATA, round_number)

        try:
            path = self._write_artifact(round_number, records)
            address = await self.storage.upload(str(path))
            if not address:
                raise StorageUploadError("storage returned an empty content address")
        except StorageUploadError as e:
            logger.error(f"[PROOF] Upload failed for round {round_number}: {e}")
            return PublishResult(PublishStatus.UPLOAD_FAILED, round_number)
        except Exception as e:
            logger.error(
                f"[PROOF] Upload failed for round {round_number}: {StorageUploadError(str(e))}",
                exc_info=True,
            )
            return PublishResult(PublishStatus.UPLOAD_FAILED, round_number)

        proof = ProofRecord(round=round_number, content_address=address)
        try:
            await self.store.upsert(PROOFS, proof.to_dict())
        except Exception as e:
            logger.error(
                f"[PROOF] Uploaded round {round_number} as {address} but could not "
                f"record the proof: {e}",
                exc_info=True,
            )
            return PublishResult(PublishStatus.UPLOAD_FAILED, round_number)
        logger.info(
            f"[PROOF] Round {round_number}: {len(records)} records published as {address}"
        )
        return PublishResult(PublishStatus.PUBLISHED, round_number, address)

    def _write_artifact(self, round_number: int, records) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.data_dir / self.artifact_name
        entries = [artifact_entry(r, round_number) for r in records]
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(entries, f, ensure_ascii=False, indent=2)
        logger.debug(f"[PROOF] Wrote {len(entries)} entries to {path}")
        return path
