"""
feedgate/core/cache.py
═══════════════════════════════════════════════════════════════════════════
Feed cache: rewritten feed bodies keyed by feed URL.
  • get() fails closed: an entry past the freshness window is deleted and
    reported as a miss
  • put() refuses single bodies above max_entry_bytes
  • put() runs LRU eviction ONLY when the projected total would overflow
    max_cache_bytes; eviction stops once 20% of the max is free and the
    new body fits
  • Every put() may trigger the expiry sweep (at most once per
    cleanup_interval_s); the sweep runs inline, there is no background task
  • The size check is best-effort: concurrent writers can overshoot by one
    in-flight body. Re-putting a key counts only the new body
  • A hit writes last_accessed back only while the stored timestamp is the
    one it read. A put landing between that re-read and the write-back can
    still lose to it; the KV has no compare-and-set
  • Bodies are stored base64-encoded so any bytes survive the JSON backend
  • Backend failures surface as CacheError; counters move only after the
    operation they describe has succeeded
═══════════════════════════════════════════════════════════════════════════
"""

import base64
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from feedgate.core.allowlist import AllowlistRegistry
from feedgate.core.config import (
    CACHE_PREFIX, EVICTION_FREE_RATIO, FRESHNESS_WINDOW_S, MiB, Settings,
)
from feedgate.core.errors import CacheError
from feedgate.core.kv import KVStore

log = logging.getLogger("cache")


@dataclass(frozen=True)
class CachedEntry:
    key: str
    body: bytes
    created_at: float
    last_accessed_at: float

    @property
    def size_bytes(self) -> int:
        return len(self.body)

    def to_record(self) -> dict:
        return {
            "content":       base64.b64encode(self.body).decode("ascii"),
            "timestamp":     self.created_at,
            "size":          self.size_bytes,
            "last_accessed": self.last_accessed_at,
        }

    @classmethod
    def from_record(cls, key: str, record: dict) -> "CachedEntry":
        ts = float(record.get("timestamp", 0))
        return cls(
            key=key,
            body=base64.b64decode(record.get("content", "")),
            created_at=ts,
            last_accessed_at=float(record.get("last_accessed") or ts),
        )


class CacheMetrics:
    """Process-wide counters. Never reset; read via snapshot()."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._cleanups = 0
        self._last_cleanup_duration = 0.0

    def hit(self) -> None:
        with self._lock:
            self._hits += 1

    def miss(self) -> None:
        with self._lock:
            self._misses += 1

    def cleanup_done(self, duration_s: float) -> None:
        with self._lock:
            self._cleanups += 1
            self._last_cleanup_duration = duration_s

    @property
    def hit_rate(self) -> float:
        with self._lock:
            total = self._hits + self._misses
            return self._hits / total if total else 0.0

    def snapshot(self) -> dict:
        rate = self.hit_rate
        with self._lock:
            return {
                "hits":                    self._hits,
                "misses":                  self._misses,
                "cleanups":                self._cleanups,
                "last_cleanup_duration_s": round(self._last_cleanup_duration, 4),
                "hit_rate":                rate,
            }


@dataclass(frozen=True)
class CacheStats:
    total_bytes: int
    entry_count: int
    oldest_timestamp: Optional[float]
    metrics: dict
    usage_ratio: float

    def as_dict(self) -> dict:
        return {
            "total_bytes":      self.total_bytes,
            "entry_count":      self.entry_count,
            "oldest_timestamp": self.oldest_timestamp,
            "metrics":          self.metrics,
            "usage_ratio":      round(self.usage_ratio, 4),
        }


class CacheStore:
    def __init__(
        self,
        kv: KVStore,
        settings: Settings,
        allowlist: Optional[AllowlistRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._kv = kv
        self._allowlist = allowlist
        self._clock = clock
        self.max_cache_bytes = settings.max_cache_bytes
        self.max_entry_bytes = settings.max_entry_bytes
        self.cleanup_interval_s = settings.cleanup_interval_s
        self.memory_warning_ratio = settings.memory_warning_ratio
        self.metrics = CacheMetrics()
        self._last_sweep = clock()

    def _expired(self, created_at: float, now: float) -> bool:
        return now - created_at > FRESHNESS_WINDOW_S

    # ── Lookup ────────────────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[CachedEntry]:
        try:
            record = await self._kv.get(CACHE_PREFIX, key)
            if record is None:
                self.metrics.miss()
                return None

            entry = CachedEntry.from_record(key, record)
            now = self._clock()
            if self._expired(entry.created_at, now):
                await self._kv.delete(CACHE_PREFIX, key)
                self.metrics.miss()
                log.debug(f"Expired on read: {key}")
                return None

            # Skip the write-back if a newer put replaced the entry meanwhile
            latest = await self._kv.get(CACHE_PREFIX, key)
            if latest is not None and latest.get("timestamp") == record.get("timestamp"):
                latest["last_accessed"] = now
                await self._kv.set(CACHE_PREFIX, key, latest)
        except Exception as ex:
            log.error(f"get failed for key={key}: {ex}")
            raise CacheError(f"Failed to get cached content: {ex}") from ex

        self.metrics.hit()
        return CachedEntry(key, entry.body, entry.created_at, now)

    # ── Store ─────────────────────────────────────────────────────────────────

    async def put(self, key: str, body: bytes) -> Optional[CachedEntry]:
        """Cache *body* for *key*. Returns None when the body is too large."""
        size = len(body)
        if size > self.max_entry_bytes:
            log.warning(
                f"Cache size ({size} bytes) exceeds maximum entry size "
                f"({self.max_entry_bytes} bytes) for {key} — not cached"
            )
            return None

        now = self._clock()
        entry = CachedEntry(key, body, now, now)
        try:
            current = await self.total_bytes()
            previous = await self._kv.get(CACHE_PREFIX, key)
            if previous is not None:
                current -= int(previous.get("size") or 0)
            if current + size > self.max_cache_bytes:
                await self._evict_lru(current, size, keep=key)
            await self._kv.set(CACHE_PREFIX, key, entry.to_record())
        except CacheError:
            raise
        except Exception as ex:
            log.error(f"put failed for key={key}: {ex}")
            raise CacheError(f"Failed to cache content: {ex}") from ex

        await self._maybe_sweep()
        await self._check_memory_usage()
        return entry

    async def invalidate(self, key: str) -> None:
        try:
            await self._kv.delete(CACHE_PREFIX, key)
        except Exception as ex:
            log.error(f"invalidate failed for key={key}: {ex}")
            raise CacheError(f"Failed to invalidate cache entry: {ex}") from ex

    # ── Size accounting ───────────────────────────────────────────────────────

    async def total_bytes(self) -> int:
        try:
            return sum(int(rec.get("size") or 0) for _, rec in await self._kv.items(CACHE_PREFIX))
        except Exception as ex:
            log.error(f"total_bytes failed: {ex}")
            raise CacheError(f"Failed to compute cache size: {ex}") from ex

    async def _evict_lru(self, current: int, incoming: int, keep: Optional[str] = None) -> None:
        """*current* excludes *keep*, which is about to be overwritten."""
        # Leave at least 20% of the max free AND room for the incoming body.
        target_total = self.max_cache_bytes - max(self.max_cache_bytes * EVICTION_FREE_RATIO, incoming)
        goal = current - target_total
        if goal <= 0:
            return

        entries = await self._kv.items(CACHE_PREFIX)
        # sorted() is stable → ties keep enumeration order
        entries = sorted(
            entries,
            key=lambda kv: float(kv[1].get("last_accessed") or kv[1].get("timestamp") or 0),
        )

        freed = 0
        evicted = 0
        for key, record in entries:
            if freed >= goal:
                break
            if key == keep:
                continue
            await self._kv.delete(CACHE_PREFIX, key)
            freed += int(record.get("size") or 0)
            evicted += 1
        log.info(f"LRU eviction: removed {evicted} entries, freed {freed / MiB:.2f}MB")

    async def _check_memory_usage(self) -> None:
        current = await self.total_bytes()
        ratio = current / self.max_cache_bytes if self.max_cache_bytes else 0.0
        if ratio > self.memory_warning_ratio:
            log.warning(
                f"High memory usage: {ratio * 100:.2f}% of maximum cache size "
                f"({current / MiB:.2f}MB / {self.max_cache_bytes / MiB:.2f}MB)"
            )

    # ── Expiry sweep ──────────────────────────────────────────────────────────

    async def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep < self.cleanup_interval_s:
            return
        self._last_sweep = self._clock()
        await self.sweep()

    async def sweep(self) -> int:
        """Delete every expired feed and allowlist entry. Returns the count."""
        log.info("Starting cache cleanup...")
        t0 = time.perf_counter()
        now = self._clock()
        cleaned = 0
        freed = 0
        try:
            for key, record in await self._kv.items(CACHE_PREFIX):
                if self._expired(float(record.get("timestamp", 0)), now):
                    await self._kv.delete(CACHE_PREFIX, key)
                    freed += int(record.get("size") or 0)
                    cleaned += 1
        except Exception as ex:
            log.error(f"sweep failed: {ex}")
            raise CacheError(f"Failed to cleanup cache: {ex}") from ex

        if self._allowlist is not None:
            cleaned += await self._allowlist.purge_expired()

        elapsed = time.perf_counter() - t0
        self.metrics.cleanup_done(elapsed)
        log.info(
            f"Cache cleanup completed in {elapsed * 1000:.1f}ms: "
            f"{cleaned} entries, {freed / MiB:.2f}MB freed, "
            f"hit rate {self.metrics.hit_rate * 100:.2f}%"
        )
        return cleaned

    # ── Stats ─────────────────────────────────────────────────────────────────

    async def stats(self) -> CacheStats:
        try:
            records = [rec for _, rec in await self._kv.items(CACHE_PREFIX)]
        except Exception as ex:
            log.error(f"stats failed: {ex}")
            raise CacheError(f"Failed to get cache stats: {ex}") from ex

        total = sum(int(r.get("size") or 0) for r in records)
        oldest = min((float(r.get("timestamp", 0)) for r in records), default=None)
        return CacheStats(
            total_bytes=total,
            entry_count=len(records),
            oldest_timestamp=oldest,
            metrics=self.metrics.snapshot(),
            usage_ratio=total / self.max_cache_bytes if self.max_cache_bytes else 0.0,
        )
