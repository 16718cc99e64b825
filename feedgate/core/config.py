"""
feedgate/core/config.py
═══════════════════════════════════════════════════════════════════════════════
Runtime settings, read once from the environment.

  FEEDGATE_BASE_URL             → origin written into rewritten item links
  FEEDGATE_MAX_CACHE_BYTES      → total bytes the feed cache may hold
  FEEDGATE_MAX_ENTRY_BYTES      → largest single feed body we will cache
  FEEDGATE_CLEANUP_INTERVAL_S   → minimum gap between expiry sweeps
  FEEDGATE_MEMORY_WARNING_RATIO → usage ratio that triggers a warning
  FEEDGATE_KV_PATH              → SQLite file for the KV store ("" = memory)
  FEEDGATE_FETCH_TIMEOUT_S      → outbound fetch timeout (feeds + content)

The freshness window is NOT configurable: cache entries, allowlist entries
and the Cache-Control max-age all share the same 5 minutes.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import os
from dataclasses import dataclass

log = logging.getLogger("config")

MiB = 1024 * 1024

# ── Fixed policy ──────────────────────────────────────────────────────────────
FRESHNESS_WINDOW_S = 5 * 60
EVICTION_FREE_RATIO = 0.2          # LRU eviction frees until 20% of max is free

# ── Key prefixes (never iterated together) ────────────────────────────────────
CACHE_PREFIX     = "rss"
ALLOWLIST_PREFIX = "valid_urls"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"{name}={raw!r} is not an integer — using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning(f"{name}={raw!r} is not a number — using {default}")
        return default


BASE_URL             = os.environ.get("FEEDGATE_BASE_URL", "http://localhost:8000")
PORT                 = _env_int("FEEDGATE_PORT", 8000)
MAX_CACHE_BYTES      = _env_int("FEEDGATE_MAX_CACHE_BYTES", 50 * MiB)
MAX_ENTRY_BYTES      = _env_int("FEEDGATE_MAX_ENTRY_BYTES", 50 * MiB)
CLEANUP_INTERVAL_S   = _env_float("FEEDGATE_CLEANUP_INTERVAL_S", 30 * 60)
MEMORY_WARNING_RATIO = _env_float("FEEDGATE_MEMORY_WARNING_RATIO", 0.8)
KV_PATH              = os.environ.get("FEEDGATE_KV_PATH", "")
FETCH_TIMEOUT_S      = _env_float("FEEDGATE_FETCH_TIMEOUT_S", 30.0)
CONNECT_TIMEOUT_S    = _env_float("FEEDGATE_CONNECT_TIMEOUT_S", 15.0)


@dataclass(frozen=True)
class Settings:
    """Everything the app factory needs. Defaults come from the environment."""

    base_url: str = BASE_URL
    max_cache_bytes: int = MAX_CACHE_BYTES
    max_entry_bytes: int = MAX_ENTRY_BYTES
    cleanup_interval_s: float = CLEANUP_INTERVAL_S
    memory_warning_ratio: float = MEMORY_WARNING_RATIO
    kv_path: str = KV_PATH
    fetch_timeout_s: float = FETCH_TIMEOUT_S
    connect_timeout_s: float = CONNECT_TIMEOUT_S

    @property
    def public_base_url(self) -> str:
        return self.base_url.rstrip("/")
