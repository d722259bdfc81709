"""
In-memory stand-ins for the browser, the crawled site and storage.

``FakeSite`` holds the state a real site would: which password is right,
whether saved cookies are accepted, what the feed renders after each
scroll and which single items can be opened live.
"""

import asyncio
from typing import Dict, List, Optional, Sequence

from roundcrawler.auth import SessionManager, SessionStore
from roundcrawler.browser import BrowserHandle
from roundcrawler.errors import ArtifactNotFoundError, StorageUploadError
from roundcrawler.extractor import ContentExtractor
from roundcrawler.sites.base import Credentials, SiteAdapter
from roundcrawler.storage import ContentStorageClient

BASE = "https://feed.test"

CID_A = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"
CID_B = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


# ---------------------------------------------------------------------------
# HTML fixtures
# ---------------------------------------------------------------------------

def item_html(
    item_id: str,
    *,
    handle: str = "@alice",
    name: str = "Alice",
    text: str = "hello world",
    posted: Optional[str] = "2024-03-01T12:30:00.000Z",
    counters: Sequence[str] = ("3", "10", "2", "1.2K"),
    links: Sequence[str] = (),
) -> str:
    """Outer HTML of one rendered feed item."""
    time_tag = f'<time datetime="{posted}">Mar 1</time>' if posted else ""
    anchors = "".join(f' <a href="{href}">{href}</a>' for href in links)
    text_div = f'<div data-testid="tweetText"><span>{text}</span>{anchors}</div>' if text else ""
    counter_spans = "".join(
        f'<span data-testid="app-text-transition-container">{c}</span>' for c in counters
    )
    user_name = (
        f'<div data-testid="User-Name">'
        f'<a role="link" href="/{handle.lstrip("@")}"><span>{name}</span></a>'
        f'<a role="link" href="/{handle.lstrip("@")}" tabindex="-1"><span>{handle}</span></a>'
        f'</div>'
    ) if handle else ""
    return (
        f'<article aria-labelledby="id-{item_id}" data-testid="tweet">'
        f'<div data-testid="Tweet-User-Avatar"><img src="https://img.test/{item_id}.jpg"></div>'
        f'{user_name}'
        f'<a href="/{handle.lstrip("@") or "ad"}/status/{item_id}">{time_tag}</a>'
        f'{text_div}'
        f'<div role="group">{counter_spans}</div>'
        f'</article>'
    )


# ---------------------------------------------------------------------------
# Browser
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSite:
    def __init__(
        self,
        *,
        password: str = "secret",
        cookies_valid: bool = False,
        feed: Optional[List[List[str]]] = None,
        live_items: Optional[Dict[str, str]] = None,
    ):
        self.password = password
        self.cookies_valid = cookies_valid
        self.feed = feed or []
        self.live_items = live_items or {}
        self.rate_limit_after: Optional[int] = None    # scrolls before the notice shows
        self.challenge_checks = 0                      # challenge shown this many times
        self.session_revoked = False
        self.scrolls = 0
        self.identifier_entered: Optional[str] = None
        self.issued_cookies = [{'name': 'auth_token', 'value': 'tok', 'domain': 'feed.test', 'path': '/'}]


class FakePage:
    def __init__(self, site: FakeSite):
        self.site = site
        self.url = "about:blank"
        self.closed = False
        self.visited: List[str] = []

    async def goto(self, url: str, timeout: Optional[int] = None) -> None:
        self.visited.append(url)
        if self.site.session_revoked or (url == f"{BASE}/home" and not self.site.cookies_valid):
            self.url = f"{BASE}/i/flow/login?redirect_after_login=%2Fhome"
        else:
            self.url = url

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[int] = None) -> None:
        await asyncio.sleep(0)

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, site: FakeSite):
        self.site = site
        self.pages: List[FakePage] = []
        self.added_cookies: List[dict] = []
        self.closed = False

    async def add_cookies(self, cookies: List[dict]) -> None:
        self.added_cookies.extend(cookies)

    async def cookies(self) -> List[dict]:
        return list(self.site.issued_cookies)

    async def new_page(self) -> FakePage:
        page = FakePage(self.site)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self):
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1


class FakeBrowserFactory:
    """Opens a ``BrowserHandle`` over fake Playwright objects."""

    def __init__(self, site: FakeSite):
        self.site = site
        self.handles: List[BrowserHandle] = []

    async def __call__(self) -> BrowserHandle:
        context = FakeContext(self.site)
        page = await context.new_page()
        handle = BrowserHandle(None, FakeBrowser(), context, page)
        self.handles.append(handle)
        return handle


class FakeAdapter(SiteAdapter):
    """Drives ``FakeSite`` through the SiteAdapter interface."""

    def __init__(self, site: FakeSite, clock=None):
        self.site = site
        self.extractor = ContentExtractor(site_url=BASE, clock=clock or FakeClock())

    @property
    def name(self) -> str:
        return "Feed"

    @property
    def home_url(self) -> str:
        return f"{BASE}/home"

    @property
    def login_url(self) -> str:
        return f"{BASE}/i/flow/login"

    @property
    def login_redirect_url(self) -> str:
        return f"{BASE}/i/flow/login?redirect_after_login=%2Fhome"

    def search_url(self, search_term: str) -> str:
        return f"{BASE}/search?q={search_term}&f=live"

    def item_url(self, item_id: str) -> str:
        return f"{BASE}/i/status/{item_id}"

    async def enter_identifier(self, page, creds: Credentials) -> None:
        page.url = self.login_url
        self.site.identifier_entered = creds.username

    async def enter_password(self, page, creds: Credentials) -> None:
        if creds.password == self.site.password:
            page.url = self.home_url

    async def has_verification_challenge(self, page) -> bool:
        if self.site.challenge_checks > 0:
            self.site.challenge_checks -= 1
            return True
        return False

    async def has_rate_limit_notice(self, page) -> bool:
        limit = self.site.rate_limit_after
        return limit is not None and self.site.scrolls >= limit

    async def collect_fragments(self, page) -> List[str]:
        prefix = f"{BASE}/i/status/"
        if page.url.startswith(prefix):
            item = self.site.live_items.get(page.url[len(prefix):])
            return [item] if item else []
        if not self.site.feed:
            return []
        return list(self.site.feed[min(self.site.scrolls, len(self.site.feed) - 1)])

    async def scroll(self, page) -> None:
        self.site.scrolls += 1

    def extract_item(self, html: str, search_term: str = ""):
        return self.extractor.extract(html, search_term)


def make_session(site: FakeSite, store, *, clock=None, password: str = "secret", **kwargs):
    """SessionManager over the fake site with all waits disabled."""
    clock = clock or FakeClock()
    factory = FakeBrowserFactory(site)
    options = dict(
        staleness_s=50.0,
        verification_wait_s=0.0,
        verification_poll_s=0.0,
        settle_delay_s=0.0,
        clock=clock,
    )
    options.update(kwargs)
    session = SessionManager(
        FakeAdapter(site, clock),
        Credentials(username="alice", password=password),
        SessionStore(store, clock=clock),
        factory,
        **options,
    )
    return session, factory


class SequenceOracle:
    """Round oracle replaying a scripted sequence; the last value repeats."""

    def __init__(self, values: Sequence):
        self.values = list(values)
        self.calls = 0

    async def __call__(self) -> int:
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        if isinstance(value, Exception):
            raise value
        return value


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class FakeStorageClient(ContentStorageClient):
    """Keeps uploaded artifacts in memory under a fixed CID."""

    def __init__(self, cid: str = CID_A, *, fail_upload: bool = False):
        self.cid = cid
        self.fail_upload = fail_upload
        self.uploads: List[str] = []
        self.blobs: Dict[str, bytes] = {}
        self.get_calls = 0
        self.get_error: Optional[Exception] = None

    async def upload(self, file_path: str) -> str:
        self.uploads.append(file_path)
        if self.fail_upload:
            raise StorageUploadError("pinning service rejected the upload")
        with open(file_path, 'rb') as f:
            self.blobs[self.cid] = f.read()
        return self.cid

    async def get(self, address: str, artifact_name: str) -> bytes:
        self.get_calls += 1
        if self.get_error is not None:
            raise self.get_error
        if address not in self.blobs:
            raise ArtifactNotFoundError(f"{address}/{artifact_name} not found")
        return self.blobs[address]
