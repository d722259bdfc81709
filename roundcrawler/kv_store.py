"""
Key-Value Store
===============
Small document store used for records, proofs, cookies and per-round
search terms.

Each collection is a JSON file holding a list of documents.  Every
document carries a unique ``id``.  Queries are equality matches on
top-level fields.  Writes go to a temp file first and are then renamed
over the original so a crash never leaves a half-written collection.

Contract used by the rest of the package:
    - ``insert`` rejects a duplicate ``id`` (callers check freshness first)
    - ``upsert`` replaces by ``id`` or appends
    - ``find`` / ``find_one`` match on field equality
    - ``remove`` / ``remove_many`` delete by ``id``
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class DuplicateKeyError(KeyError):
    """Raised by ``insert`` when a document with the same id exists."""


class KeyValueStore:
    """Interface of the persistence collaborator."""

    async def insert(self, collection: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def upsert(self, collection: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def find(self, collection: str, **criteria: Any) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one(self, collection: str, **criteria: Any) -> Optional[Dict[str, Any]]:
        found = await self.find(collection, **criteria)
        return found[0] if found else None

    async def remove(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    async def remove_many(self, collection: str, doc_ids: Iterable[str]) -> int:
        removed = 0
        for doc_id in doc_ids:
            removed += await self.remove(collection, doc_id)
        return removed


class JsonKeyValueStore(KeyValueStore):
    """File-backed store: ``<root>/<collection>.json`` per collection.

    Collections are cached in memory after the first read; an asyncio lock
    serializes mutations.
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self._cache: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    # ── Public API ────────────────────────────────────────────────

    async def insert(self, collection: str, document: Dict[str, Any]) -> None:
        doc_id = self._require_id(document)
        async with self._lock:
            docs = self._load(collection)
            if any(d.get('id') == doc_id for d in docs):
                raise DuplicateKeyError(f"{collection}: duplicate id {doc_id!r}")
            docs.append(dict(document))
            self._save(collection, docs)

    async def upsert(self, collection: str, document: Dict[str, Any]) -> None:
        doc_id = self._require_id(document)
        async with self._lock:
            docs = self._load(collection)
            for i, existing in enumerate(docs):
                if existing.get('id') == doc_id:
                    docs[i] = dict(document)
                    break
            else:
                docs.append(dict(document))
            self._save(collection, docs)

    async def find(self, collection: str, **criteria: Any) -> List[Dict[str, Any]]:
        async with self._lock:
            docs = self._load(collection)
            return [
                dict(d) for d in docs
                if all(d.get(k) == v for k, v in criteria.items())
            ]

    async def remove(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            docs = self._load(collection)
            kept = [d for d in docs if d.get('id') != doc_id]
            if len(kept) == len(docs):
                return False
            self._save(collection, kept)
            return True

    async def remove_many(self, collection: str, doc_ids: Iterable[str]) -> int:
        """Remove several documents with a single rewrite of the collection."""
        doomed = set(doc_ids)
        async with self._lock:
            docs = self._load(collection)
            kept = [d for d in docs if d.get('id') not in doomed]
            removed = len(docs) - len(kept)
            if removed:
                self._save(collection, kept)
            return removed

    # ── Internal ──────────────────────────────────────────────────

    @staticmethod
    def _require_id(document: Dict[str, Any]) -> str:
        doc_id = document.get('id')
        if not doc_id:
            raise ValueError("document has no id")
        return doc_id

    def _path(self, collection: str) -> Path:
        return self.root / f"{collection}.json"

    def _load(self, collection: str) -> List[Dict[str, Any]]:
        if collection in self._cache:
            return self._cache[collection]

        path = self._path(collection)
        docs: List[Dict[str, Any]] = []
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                if isinstance(data, list):
                    docs = data
                else:
                    logger.warning(f"[STORE] {path} is not a list — starting empty")
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning(f"[STORE] Corrupt collection file {path}: {exc}")
        self._cache[collection] = docs
        return docs

    def _save(self, collection: str, docs: List[Dict[str, Any]]) -> None:
        self._cache[collection] = docs
        path = self._path(collection)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(docs, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)
