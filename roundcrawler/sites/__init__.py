"""
Site adapters — one per crawlable source.
"""

from .base import Credentials, SiteAdapter
from .x_feed import XFeedAdapter

__all__ = [
    "Credentials",
    "SiteAdapter",
    "XFeedAdapter",
]
