"""
feedgate/core/allowlist.py
═══════════════════════════════════════════════════════════════════════════
Per-feed registry of article URLs the /content/ endpoint may fetch.

This is the ONLY guard between /content/ and an open proxy:
  • A URL is allowed iff some non-expired entry contains that exact string
    (no normalisation, no prefix or wildcard matching)
  • replace() overwrites a feed's entry wholesale; URLs dropped from the
    feed stop being reachable on the next rewrite
  • Expired entries met during is_allowed() are deleted after the scan
  • Entries expire on their own clock, independent of the feed cache entry
═══════════════════════════════════════════════════════════════════════════
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from feedgate.core.config import ALLOWLIST_PREFIX, FRESHNESS_WINDOW_S
from feedgate.core.errors import CacheError
from feedgate.core.kv import KVStore

log = logging.getLogger("allowlist")


@dataclass(frozen=True)
class AllowlistEntry:
    feed_key: str
    urls: frozenset
    created_at: float

    def to_record(self) -> dict:
        return {"urls": sorted(self.urls), "timestamp": self.created_at}

    @classmethod
    def from_record(cls, feed_key: str, record: dict) -> "AllowlistEntry":
        return cls(
            feed_key=feed_key,
            urls=frozenset(record.get("urls") or []),
            created_at=float(record.get("timestamp", 0)),
        )


class AllowlistRegistry:
    def __init__(self, kv: KVStore, clock: Callable[[], float] = time.time):
        self._kv = kv
        self._clock = clock

    def _expired(self, entry: AllowlistEntry, now: float) -> bool:
        return now - entry.created_at > FRESHNESS_WINDOW_S

    async def replace(self, feed_key: str, urls: Iterable[str]) -> AllowlistEntry:
        entry = AllowlistEntry(feed_key, frozenset(urls), self._clock())
        try:
            await self._kv.set(ALLOWLIST_PREFIX, feed_key, entry.to_record())
        except Exception as ex:
            log.error(f"replace failed for feed={feed_key}: {ex}")
            raise CacheError(f"Failed to save valid URLs: {ex}") from ex
        log.info(f"Allowlist for {feed_key}: {len(entry.urls)} URLs")
        return entry

    async def is_allowed(self, url: str) -> bool:
        now = self._clock()
        expired: list[str] = []
        allowed = False
        try:
            for feed_key, record in await self._kv.items(ALLOWLIST_PREFIX):
                entry = AllowlistEntry.from_record(feed_key, record)
                if self._expired(entry, now):
                    expired.append(feed_key)
                    continue
                if url in entry.urls:
                    allowed = True
                    break
            for feed_key in expired:
                await self._kv.delete(ALLOWLIST_PREFIX, feed_key)
        except Exception as ex:
            log.error(f"is_allowed failed for url={url}: {ex}")
            raise CacheError(f"Failed to check valid content URL: {ex}") from ex

        if expired:
            log.info(f"Dropped {len(expired)} expired allowlist entries during lookup")
        return allowed

    async def purge_expired(self) -> int:
        """Delete every expired entry. Called by the cache sweep."""
        now = self._clock()
        try:
            stale = [
                k for k, rec in await self._kv.items(ALLOWLIST_PREFIX)
                if self._expired(AllowlistEntry.from_record(k, rec), now)
            ]
            for feed_key in stale:
                await self._kv.delete(ALLOWLIST_PREFIX, feed_key)
        except Exception as ex:
            log.error(f"purge_expired failed: {ex}")
            raise CacheError(f"Failed to purge allowlist: {ex}") from ex
        return len(stale)

    async def count(self) -> int:
        try:
            return len(await self._kv.items(ALLOWLIST_PREFIX))
        except Exception as ex:
            log.error(f"count failed: {ex}")
            raise CacheError(f"Failed to count allowlist entries: {ex}") from ex
