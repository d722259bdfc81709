"""
Error Taxonomy
==============
Typed exceptions raised inside components and converted to outcomes at
component boundaries.

    RoundCrawlerError
    ├── SessionError                 login / cookie replay failed
    │   └── VerificationRequiredError   source wants an email challenge answered
    ├── ParseError                   one feed item could not be parsed
    ├── StorageError
    │   ├── StorageUploadError       proof artifact upload failed
    │   └── StorageRetrievalError    artifact could not be fetched
    │       ├── ArtifactNotFoundError
    │       └── MalformedArtifactError
    └── ValidationError              malformed content address
"""

from __future__ import annotations


class RoundCrawlerError(Exception):
    """Base class for all roundcrawler errors."""


class SessionError(RoundCrawlerError):
    """Login or session negotiation failed."""


class VerificationRequiredError(SessionError):
    """The source is asking for an identity (email) verification step.

    The session stays in the terminal ``VERIFICATION_REQUIRED`` state until
    an operator completes the challenge and calls ``SessionManager.reset()``.
    """


class ParseError(RoundCrawlerError):
    """A single feed item could not be turned into a Record."""


class StorageError(RoundCrawlerError):
    """Base class for content-addressed storage faults."""


class StorageUploadError(StorageError):
    """Uploading an artifact failed or returned no content address."""


class StorageRetrievalError(StorageError):
    """An artifact could not be retrieved from a storage source."""


class ArtifactNotFoundError(StorageRetrievalError):
    """The source answered, but does not hold the artifact."""


class MalformedArtifactError(StorageRetrievalError):
    """The artifact was retrieved but is not valid JSON."""


class ValidationError(RoundCrawlerError):
    """A content address failed format validation."""
