"""Shared fixtures: fake clock, in-memory KV, fake origin servers, app client."""

from typing import Union

import httpx
import pytest
from fastapi.testclient import TestClient

from feedgate.core.allowlist import AllowlistRegistry
from feedgate.core.cache import CacheStore
from feedgate.core.config import Settings
from feedgate.core.errors import KVError
from feedgate.core.kv import MemoryKV
from feedgate.main import create_app

BASE_URL = "http://gateway.test"
FEED_URL = "https://feeds.example/rss.xml"
ARTICLE_A = "https://news.example/a?x=1&y=2"
ARTICLE_B = "https://news.example/b"


def rss_xml(*items: tuple) -> str:
    """Build an upstream feed from (title, link, description) tuples."""
    body = "".join(
        f"<item><title>{t}</title><link>{l}</link><description>{d}</description></item>"
        for t, l, d in items
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        "<title>Example News</title>"
        "<link>https://news.example/</link>"
        "<description>All the news</description>"
        f"{body}"
        "</channel></rss>"
    )


TWO_ITEM_FEED = rss_xml(
    ("First", ARTICLE_A.replace("&", "&amp;"), "one"),
    ("Second", ARTICLE_B, "two"),
)

# Declared encoding only, no charset on the wire
LATIN1_FEED = (
    '<?xml version="1.0" encoding="ISO-8859-1"?>'
    '<rss version="2.0"><channel><title>Caf\xe9 News</title>'
    "<link>https://cafe.example/</link><description>d</description>"
    "<item><title>Cr\xe8me br\xfbl\xe9e</title><link>https://cafe.example/a</link>"
    "<description>x</description></item>"
    "</channel></rss>"
).encode("latin-1")


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingKV(MemoryKV):
    """MemoryKV whose selected operations blow up."""

    def __init__(self, fail_on: set):
        super().__init__()
        self.fail_on = fail_on

    async def get(self, prefix, key):
        if "get" in self.fail_on:
            raise KVError("disk on fire")
        return await super().get(prefix, key)

    async def set(self, prefix, key, value):
        if "set" in self.fail_on:
            raise KVError("disk on fire")
        await super().set(prefix, key, value)

    async def items(self, prefix):
        if "items" in self.fail_on:
            raise KVError("disk on fire")
        return await super().items(prefix)


class FakeOrigin:
    """Routes → (status, body, content_type). Counts every request it serves."""

    def __init__(self):
        self.routes: dict[str, tuple[int, Union[str, bytes], str]] = {}
        self.calls: dict[str, int] = {}

    def serve(self, url: str, body: Union[str, bytes], status: int = 200,
              content_type: str = "application/rss+xml") -> None:
        self.routes[url] = (status, body, content_type)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls[url] = self.calls.get(url, 0) + 1
        if url not in self.routes:
            raise httpx.ConnectError("no route to host", request=request)
        status, body, ctype = self.routes[url]
        headers = {"Content-Type": ctype}
        if isinstance(body, bytes):
            return httpx.Response(status, content=body, headers=headers)
        return httpx.Response(status, text=body, headers=headers)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv():
    return MemoryKV()


@pytest.fixture
def settings():
    return Settings(
        base_url=BASE_URL,
        max_cache_bytes=1000,
        max_entry_bytes=1000,
        cleanup_interval_s=60,
        memory_warning_ratio=0.8,
    )


@pytest.fixture
def allowlist(kv, clock):
    return AllowlistRegistry(kv, clock=clock)


@pytest.fixture
def cache(kv, settings, allowlist, clock):
    return CacheStore(kv, settings, allowlist=allowlist, clock=clock)


@pytest.fixture
def origin():
    o = FakeOrigin()
    o.serve(FEED_URL, TWO_ITEM_FEED)
    o.serve(ARTICLE_A, "<html><body>Article A</body></html>", content_type="text/html; charset=utf-8")
    o.serve(ARTICLE_B, "<html><body>Article B</body></html>", content_type="text/html; charset=utf-8")
    return o


def make_client(origin: FakeOrigin, clock: FakeClock, kv=None, **overrides) -> TestClient:
    settings = Settings(base_url=BASE_URL, **overrides)
    http = httpx.AsyncClient(transport=httpx.MockTransport(origin.handler))
    app = create_app(settings=settings, kv=kv or MemoryKV(), http=http, clock=clock)
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def client(origin, clock):
    with make_client(origin, clock) as c:
        yield c
