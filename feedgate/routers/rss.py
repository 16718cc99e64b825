"""
feedgate/routers/rss.py
Endpoint:
  GET /rss/?feedURL=<url>   → rewritten feed, cached for 5 minutes

Flow:
  hit  → 304 if If-None-Match matches (or, when it is absent,
         If-Modified-Since is satisfied), else the cached body (X-Cache: HIT)
  miss → fetch → parse → rewrite → replace allowlist → cache → 200
         (X-Cache: MISS)

Nothing is written unless the whole fetch + parse + rewrite succeeded.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Query, Request, Response

from feedgate.core.errors import ParseError, ValidationError
from feedgate.core.http_client import fetch
from feedgate.core.negotiate import (
    etag_of, feed_response, is_not_modified, is_not_modified_since, not_modified_response,
)
from feedgate.routers.common import require_url
from feedgate.rss.parser import parse_feed
from feedgate.rss.rewriter import rewrite, to_xml

log = logging.getLogger("rss_router")
router = APIRouter(tags=["rss"])


@router.get("/rss/")
async def get_feed(
    request: Request,
    feed_url: Optional[str] = Query(None, alias="feedURL"),
    if_none_match: Optional[str] = Header(None),
    if_modified_since: Optional[str] = Header(None),
    accept_encoding: Optional[str] = Header(None),
) -> Response:
    feed_url = require_url(feed_url, "feedURL")
    state = request.app.state

    # ── 1. Cache ──────────────────────────────────────────────────────────────
    cached = await state.cache.get(feed_url)
    if cached is not None:
        etag = etag_of(cached.body)
        # If-Modified-Since only counts when the client sent no If-None-Match
        if if_none_match:
            not_modified = is_not_modified(if_none_match, etag)
        else:
            not_modified = is_not_modified_since(if_modified_since, cached.created_at)
        if not_modified:
            return not_modified_response(etag)
        return feed_response(
            cached.body, cache_hit=True, timestamp=cached.created_at,
            accept_encoding=accept_encoding,
        )

    # ── 2. Upstream ───────────────────────────────────────────────────────────
    resp = await fetch(state.http, feed_url)

    try:
        doc = parse_feed(resp.content)
    except ValidationError as ex:
        # The bad document came from origin, not from our caller
        raise ParseError(str(ex.detail)) from ex

    rewritten, originals = rewrite(doc, state.settings.public_base_url)
    body = to_xml(rewritten).encode("utf-8")

    # ── 3. Persist (allowlist first, then the feed body) ─────────────────────
    await state.allowlist.replace(feed_url, originals)
    entry = await state.cache.put(feed_url, body)

    log.info(f"MISS {feed_url}: {len(originals)} links rewritten, {len(body)} bytes")
    timestamp = entry.created_at if entry is not None else state.clock()
    return feed_response(body, cache_hit=False, timestamp=timestamp, accept_encoding=accept_encoding)
