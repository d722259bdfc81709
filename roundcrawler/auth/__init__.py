"""
Authentication Module
=====================
Browser session lifecycle for the crawled source.

Architecture:
    - ``SessionManager`` — login state machine, owns the browser handle
    - ``SessionStore``   — cookie persistence in the key-value store
    - ``SessionState``   — NO_SESSION / AUTHENTICATING / AUTHENTICATED /
                           VERIFICATION_REQUIRED

Usage::

    from roundcrawler.auth import SessionManager, SessionStore

    session = SessionManager(adapter, creds, SessionStore(kv), factory)
    if await session.ensure_session():
        async with session.use() as handle:
            await handle.page.goto(url)
"""

from .session_manager import SessionManager, SessionState
from .session_store import SessionStore

__all__ = [
    "SessionManager",
    "SessionState",
    "SessionStore",
]
