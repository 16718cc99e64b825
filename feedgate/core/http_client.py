"""
feedgate/core/http_client.py
Shared async httpx client for every outbound fetch (feeds + article content).
  • build_client() → one pooled client, owned by the app lifespan
  • fetch()        → GET with the client's timeout; non-2xx or transport
                     failure becomes UpstreamFetchError

The client timeout is the only timeout in the request path.
"""

import logging

import httpx

from feedgate.core.config import Settings
from feedgate.core.errors import UpstreamFetchError

log = logging.getLogger("http_client")

_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10)

_HEADERS = {
    "User-Agent": "feedgate/1.0 (+RSS caching gateway)",
    "Accept":     "application/rss+xml, application/xml;q=0.9, text/html;q=0.8, */*;q=0.5",
}


def build_client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers=_HEADERS,
        timeout=httpx.Timeout(settings.fetch_timeout_s, connect=settings.connect_timeout_s),
        follow_redirects=True,
        limits=_LIMITS,
        transport=transport,
    )


async def fetch(client: httpx.AsyncClient, url: str) -> httpx.Response:
    try:
        resp = await client.get(url)
    except httpx.HTTPError as ex:
        log.warning(f"Fetch {url} failed: {type(ex).__name__}: {ex}")
        raise UpstreamFetchError(f"{url}: {ex}") from ex

    if not resp.is_success:
        log.warning(f"Fetch {url} → HTTP {resp.status_code}")
        raise UpstreamFetchError(f"{url}: HTTP {resp.status_code}")
    return resp
