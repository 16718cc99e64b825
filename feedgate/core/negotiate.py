"""
feedgate/core/negotiate.py
═══════════════════════════════════════════════════════════════════════════
HTTP response negotiation for both endpoints.
  • ETag = MD5 of the uncompressed payload (validation token only)
  • If-None-Match / If-Modified-Since → 304; a malformed date never
    produces a 304
  • Encoding: br > gzip > identity, chosen by substring of
    Accept-Encoding (q-values are ignored)
  • Compress only bodies between 1 KiB and 10 MiB
  • brotli failure → gzip; gzip failure → identity. Never raises.
═══════════════════════════════════════════════════════════════════════════
"""

import gzip
import hashlib
import json
import logging
from email.utils import formatdate, parsedate_to_datetime
from typing import Optional

import brotli
from fastapi import Response

log = logging.getLogger("negotiate")

MIN_COMPRESS_SIZE = 1024                 # 1 KiB
MAX_COMPRESS_SIZE = 10 * 1024 * 1024     # 10 MiB

BROTLI = "br"
GZIP   = "gzip"

FEED_MAX_AGE_S = 300

FEED_CACHE_CONTROL    = f"public, max-age={FEED_MAX_AGE_S}, must-revalidate"
CONTENT_CACHE_CONTROL = "no-store, must-revalidate"
CONTENT_CSP = (
    "default-src 'self'; img-src 'self' https:; "
    "script-src 'self'; style-src 'self' 'unsafe-inline'"
)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options":        "DENY",
}


# ── Validators ────────────────────────────────────────────────────────────────

def etag_of(body: bytes) -> str:
    return hashlib.md5(body).hexdigest()


def is_not_modified(if_none_match: Optional[str], etag: str) -> bool:
    if not if_none_match:
        return False
    quoted = f'"{etag}"'
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == "*" or candidate == quoted:
            return True
    return False


def is_not_modified_since(if_modified_since: Optional[str], timestamp: float) -> bool:
    """True iff the entry (epoch seconds) is not newer than the header date."""
    if not if_modified_since:
        return False
    try:
        since = parsedate_to_datetime(if_modified_since)
    except (TypeError, ValueError, IndexError):
        return False
    if since is None:
        return False
    # HTTP dates have one-second resolution
    return int(timestamp) <= since.timestamp()


def http_date(timestamp: float) -> str:
    return formatdate(timestamp, usegmt=True)


# ── Compression ───────────────────────────────────────────────────────────────

def select_encoding(accept_encoding: Optional[str]) -> Optional[str]:
    header = accept_encoding or ""
    if BROTLI in header:
        return BROTLI
    if GZIP in header:
        return GZIP
    return None


def should_compress(size: int, encoding: Optional[str]) -> bool:
    return encoding is not None and MIN_COMPRESS_SIZE <= size <= MAX_COMPRESS_SIZE


def compress(body: bytes, encoding: Optional[str]) -> tuple[bytes, Optional[str]]:
    """Return (payload, content_encoding). content_encoding is None for identity."""
    if not should_compress(len(body), encoding):
        return body, None

    if encoding == BROTLI:
        try:
            return brotli.compress(body), BROTLI
        except Exception as ex:
            log.warning(f"Brotli compression failed, falling back to gzip: {ex}")

    try:
        return gzip.compress(body), GZIP
    except Exception as ex:
        log.warning(f"Gzip compression failed, serving uncompressed: {ex}")
    return body, None


# ── Response builders ─────────────────────────────────────────────────────────

def _encoded_response(body: bytes, headers: dict, accept_encoding: Optional[str],
                      media_type: str, status: int = 200) -> Response:
    payload, encoding = compress(body, select_encoding(accept_encoding))
    if encoding:
        headers["Content-Encoding"] = encoding
    return Response(content=payload, status_code=status, headers=headers, media_type=media_type)


def feed_response(body: bytes, *, cache_hit: bool, timestamp: float,
                  accept_encoding: Optional[str] = None) -> Response:
    headers = {
        "Cache-Control":     FEED_CACHE_CONTROL,
        "Vary":              "Accept-Encoding, Accept, If-None-Match",
        "ETag":              f'"{etag_of(body)}"',
        "Last-Modified":     http_date(timestamp),
        "X-Cache":           "HIT" if cache_hit else "MISS",
        "X-Cache-Timestamp": str(int(timestamp * 1000)),
        **_SECURITY_HEADERS,
    }
    return _encoded_response(body, headers, accept_encoding, "application/xml")


def not_modified_response(etag: str) -> Response:
    return Response(
        status_code=304,
        headers={
            "ETag":          f'"{etag}"',
            "Cache-Control": FEED_CACHE_CONTROL,
            "X-Content-Type-Options": "nosniff",
        },
    )


def content_response(body: bytes, *, content_type: str, original_url: str,
                     accept_encoding: Optional[str] = None) -> Response:
    headers = {
        "Cache-Control":  CONTENT_CACHE_CONTROL,
        "Vary":           "Accept-Encoding, Accept",
        "ETag":           f'"{etag_of(body)}"',
        "X-Original-URL": original_url,
        **_SECURITY_HEADERS,
    }
    if "text/html" in content_type.lower():
        headers["Content-Security-Policy"] = CONTENT_CSP
    return _encoded_response(body, headers, accept_encoding, content_type)


def error_response(message: str, status: int, *, as_json: bool = False) -> Response:
    headers = {
        "Cache-Control": CONTENT_CACHE_CONTROL,
        "X-Content-Type-Options": "nosniff",
    }
    if as_json:
        return Response(
            content=json.dumps({"error": message, "status": status}),
            status_code=status, headers=headers, media_type="application/json",
        )
    return Response(content=message, status_code=status, headers=headers, media_type="text/plain")


def wants_json(accept: Optional[str]) -> bool:
    return "application/json" in (accept or "")
