"""
feedgate/routers/content.py
Endpoint:
  GET /content/?contentURL=<url>   → article fetched through the gateway

Only URLs that a live rewritten feed has handed out are fetched; anything
else is a 403 and never leaves this process.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Query, Request, Response

from feedgate.core.errors import ForbiddenURLError
from feedgate.core.http_client import fetch
from feedgate.core.negotiate import content_response
from feedgate.routers.common import require_url

log = logging.getLogger("content_router")
router = APIRouter(tags=["content"])

DEFAULT_CONTENT_TYPE = "text/html"


@router.get("/content/")
async def get_content(
    request: Request,
    content_url: Optional[str] = Query(None, alias="contentURL"),
    accept_encoding: Optional[str] = Header(None),
) -> Response:
    content_url = require_url(content_url, "contentURL")
    state = request.app.state

    if not await state.allowlist.is_allowed(content_url):
        log.warning(f"Rejected non-allowlisted URL: {content_url}")
        raise ForbiddenURLError(content_url)

    resp = await fetch(state.http, content_url)
    return content_response(
        resp.content,
        content_type=resp.headers.get("Content-Type", DEFAULT_CONTENT_TYPE),
        original_url=content_url,
        accept_encoding=accept_encoding,
    )
