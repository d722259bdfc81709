"""
Data Model
==========
Records scraped from the feed and the proofs published for them.

A ``Record`` is immutable once created.  Its identity is the source-native
post id; everything else is what the feed rendered when we looked.  The
transport form (``to_dict`` / ``from_dict``) is what goes into the proof
artifact, so field names here are part of the wire format between nodes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Engagement:
    """Engagement counters as rendered (e.g. ``"1.2K"``), in feed order."""
    comment: str = ""
    like: str = ""
    share: str = ""
    view: str = ""

    def to_dict(self) -> dict:
        return {
            'comment': self.comment,
            'like': self.like,
            'share': self.share,
            'view': self.view,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Engagement":
        data = data or {}
        return cls(
            comment=str(data.get('comment', '') or ''),
            like=str(data.get('like', '') or ''),
            share=str(data.get('share', '') or ''),
            view=str(data.get('view', '') or ''),
        )


@dataclass(frozen=True)
class Record:
    """
    One scraped post.
    """
    id: str
    author_name: str = ""
    author_handle: str = ""
    author_profile_url: str = ""
    avatar_url: str = ""
    text: str = ""
    posted_at: Optional[int] = None       # epoch seconds, None if unparseable
    observed_at: float = 0.0              # epoch seconds, stamped at extraction
    engagement: Engagement = field(default_factory=Engagement)
    outbound_links: Tuple[Tuple[str, str], ...] = ()   # (short_label, full_url)
    search_term: str = ""

    @property
    def freshness(self) -> int:
        """Sort key for last-writer-wins replacement (unknown time sorts first)."""
        return self.posted_at if self.posted_at is not None else -1

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        return {
            'id': self.id,
            'author_name': self.author_name,
            'author_handle': self.author_handle,
            'author_profile_url': self.author_profile_url,
            'avatar_url': self.avatar_url,
            'text': self.text,
            'posted_at': self.posted_at,
            'observed_at': self.observed_at,
            'engagement': self.engagement.to_dict(),
            'outbound_links': [list(pair) for pair in self.outbound_links],
            'search_term': self.search_term,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """Rebuild a Record from its transport form.

        Raises:
            ValueError: if *data* is not a mapping or has no ``id``.
        """
        if not isinstance(data, dict):
            raise ValueError(f"record payload must be an object, got {type(data).__name__}")
        record_id = data.get('id')
        if not record_id:
            raise ValueError("record payload has no id")

        posted_at = data.get('posted_at')
        links = tuple(
            (str(pair[0]), str(pair[1]))
            for pair in data.get('outbound_links') or []
            if isinstance(pair, (list, tuple)) and len(pair) == 2
        )
        return cls(
            id=str(record_id),
            author_name=data.get('author_name', '') or '',
            author_handle=data.get('author_handle', '') or '',
            author_profile_url=data.get('author_profile_url', '') or '',
            avatar_url=data.get('avatar_url', '') or '',
            text=data.get('text', '') or '',
            posted_at=int(posted_at) if posted_at is not None else None,
            observed_at=float(data.get('observed_at') or 0.0),
            engagement=Engagement.from_dict(data.get('engagement')),
            outbound_links=links,
            search_term=data.get('search_term', '') or '',
        )


@dataclass(frozen=True)
class ProofRecord:
    """The content address a node published for one round."""
    round: int
    content_address: str
    created_at: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return proof_key(self.round)

    def to_dict(self) -> dict:
        return {
            'id': self.key,
            'round': self.round,
            'content_address': self.content_address,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProofRecord":
        return cls(
            round=int(data['round']),
            content_address=data['content_address'],
            created_at=float(data.get('created_at') or 0.0),
        )


def proof_key(round_number: int) -> str:
    return f"proof:{round_number}"


def artifact_entry(record: Record, round_number: int) -> dict:
    """Wrap a record in the envelope used inside the proof artifact."""
    return {
        'id': record.id,
        'round': round_number,
        'data': record.to_dict(),
    }
