"""
feedgate/core/kv.py
═══════════════════════════════════════════════════════════════════════════
Key-value substrate shared by the cache store and the allowlist.
  • Keys are (prefix, key) pairs; items() only ever walks ONE prefix
  • Every get/set/delete is atomic per key; there are no multi-key
    transactions
  • items() returns a snapshot, so callers may delete while walking it
  • delete() of a missing key is a no-op
  • Any backend failure is raised as KVError

Two backends:
  MemoryKV  → dict behind a threading lock, values copied in and out
  SQLiteKV  → single table, JSON values, survives a process restart
═══════════════════════════════════════════════════════════════════════════
"""

import asyncio
import copy
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from feedgate.core.errors import KVError

log = logging.getLogger("kv")


class KVStore:
    """Async interface both backends implement."""

    async def get(self, prefix: str, key: str) -> Optional[dict]:
        raise NotImplementedError

    async def set(self, prefix: str, key: str, value: dict) -> None:
        raise NotImplementedError

    async def delete(self, prefix: str, key: str) -> None:
        raise NotImplementedError

    async def items(self, prefix: str) -> list[tuple[str, dict]]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryKV(KVStore):
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    async def get(self, prefix: str, key: str) -> Optional[dict]:
        with self._lock:
            v = self._store.get((prefix, key))
            return copy.deepcopy(v) if v is not None else None

    async def set(self, prefix: str, key: str, value: dict) -> None:
        with self._lock:
            self._store[(prefix, key)] = copy.deepcopy(value)

    async def delete(self, prefix: str, key: str) -> None:
        with self._lock:
            self._store.pop((prefix, key), None)

    async def items(self, prefix: str) -> list[tuple[str, dict]]:
        with self._lock:
            return [(k, copy.deepcopy(v)) for (p, k), v in self._store.items() if p == prefix]


class SQLiteKV(KVStore):
    """
    File-backed store. sqlite3 calls block, so each one runs in a worker
    thread; the lock keeps the single shared connection single-threaded.
    """

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv (
            prefix TEXT NOT NULL,
            key    TEXT NOT NULL,
            value  TEXT NOT NULL,
            PRIMARY KEY (prefix, key)
        )
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            with self._conn:
                self._conn.execute(self._SCHEMA)
        except sqlite3.Error as ex:
            raise KVError(f"cannot open {self.path}: {ex}") from ex
        log.info(f"SQLite KV opened at {self.path}")

    def _run(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                with self._conn:
                    return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as ex:
                raise KVError(str(ex)) from ex

    async def get(self, prefix: str, key: str) -> Optional[dict]:
        rows = await asyncio.to_thread(
            self._run, "SELECT value FROM kv WHERE prefix = ? AND key = ?", (prefix, key)
        )
        return json.loads(rows[0][0]) if rows else None

    async def set(self, prefix: str, key: str, value: dict) -> None:
        await asyncio.to_thread(
            self._run,
            "INSERT OR REPLACE INTO kv (prefix, key, value) VALUES (?, ?, ?)",
            (prefix, key, json.dumps(value)),
        )

    async def delete(self, prefix: str, key: str) -> None:
        await asyncio.to_thread(
            self._run, "DELETE FROM kv WHERE prefix = ? AND key = ?", (prefix, key)
        )

    async def items(self, prefix: str) -> list[tuple[str, dict]]:
        rows = await asyncio.to_thread(
            self._run, "SELECT key, value FROM kv WHERE prefix = ? ORDER BY rowid", (prefix,)
        )
        return [(k, json.loads(v)) for k, v in rows]

    async def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_kv(path: str = "") -> KVStore:
    """Empty path → in-memory store; anything else → SQLite file."""
    if not path:
        log.info("Using in-memory KV (entries are lost on restart)")
        return MemoryKV()
    return SQLiteKV(path)
