"""Digest cache: durable sqlite store plus an in-process single-slot fallback.

The cache is keyed by freshness, not content: the newest entry inside the
TTL window is the only one a read returns. Older rows stay around as
history until the retention horizon, and pruning happens on every write.

No lock spans a read-then-write. Two concurrent misses both regenerate
and both write; the last write wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 4 * 60 * 60
DEFAULT_RETENTION_SECONDS = 30 * 24 * 60 * 60

Clock = Callable[[], float]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS digests (
  id TEXT PRIMARY KEY,
  data TEXT NOT NULL,
  created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_digests_created_at ON digests(created_at);
"""


def _ms(seconds: float) -> int:
    return int(seconds * 1000)


@dataclass(frozen=True)
class CacheEntry:
    """One stored digest payload."""

    id: str
    data: dict[str, Any]
    created_at: int  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "createdAt": self.created_at, "digest": self.data}


class DurableDigestStore:
    """sqlite-backed digest rows. Thread-safe."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock
        self.init()

    @classmethod
    def open(cls, db_path: str, **kwargs: Any) -> DurableDigestStore:
        """Open (and create if needed) the sqlite file at db_path."""
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return cls(conn, **kwargs)

    def init(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()

    def get_fresh(self) -> CacheEntry | None:
        """Newest entry created within the TTL window, or None."""
        cutoff = _ms(self._clock() - self.ttl_seconds)
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT id, data, created_at FROM digests
                WHERE created_at > ?
                ORDER BY created_at DESC LIMIT 1
                """,
                (cutoff,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return CacheEntry(id=row[0], data=json.loads(row[1]), created_at=row[2])

    def put(self, digest_id: str, data: dict[str, Any]) -> None:
        """Insert or replace by id, then prune rows past the retention horizon."""
        now = self._clock()
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO digests (id, data, created_at) VALUES (?, ?, ?)",
                (digest_id, json.dumps(data, ensure_ascii=False), _ms(now)),
            )
            cur = self._conn.execute(
                "DELETE FROM digests WHERE created_at < ?",
                (_ms(now - self.retention_seconds),),
            )
            self._conn.commit()
        if cur.rowcount > 0:
            logger.info(f"Pruned {cur.rowcount} digests older than retention")

    def clear(self) -> int:
        """Delete all rows. Returns the number deleted."""
        with self._lock:
            cur = self._conn.execute("DELETE FROM digests")
            self._conn.commit()
        return cur.rowcount

    def history(self, limit: int = 10) -> list[CacheEntry]:
        """Most recent entries, newest first."""
        with self._lock:
            cur = self._conn.execute(
                "SELECT id, data, created_at FROM digests ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
            rows = cur.fetchall()
        return [CacheEntry(id=r[0], data=json.loads(r[1]), created_at=r[2]) for r in rows]

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT count(*) FROM digests").fetchone()[0]


class MemoryDigestSlot:
    """Single in-process slot holding the latest known-good payload.

    Lost on restart. Writes are plain overwrites without a lock.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Clock = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._stored_at = 0.0

    def get(self) -> CacheEntry | None:
        if self._entry is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            return None
        return self._entry

    def put(self, digest_id: str, data: dict[str, Any]) -> None:
        now = self._clock()
        self._entry = CacheEntry(id=digest_id, data=data, created_at=_ms(now))
        self._stored_at = now

    def clear(self) -> None:
        self._entry = None
        self._stored_at = 0.0


class CacheUnavailableError(RuntimeError):
    """History requested without a durable store."""


class DigestCache:
    """One interface over the durable store (optional) and the memory slot.

    Reads try the durable store first and fall back to the memory slot on a
    miss or an error. Writes always update the memory slot; a durable write
    failure is logged and does not raise.
    """

    def __init__(self, memory: MemoryDigestSlot, durable: DurableDigestStore | None = None) -> None:
        self.memory = memory
        self.durable = durable

    @property
    def durable_configured(self) -> bool:
        return self.durable is not None

    async def get_cached(self) -> dict[str, Any] | None:
        """Freshest payload inside the TTL, or None."""
        if self.durable is not None:
            try:
                entry = await asyncio.to_thread(self.durable.get_fresh)
            except Exception as e:
                logger.warning(f"Durable cache read failed, using memory slot: {e}")
                entry = None
            if entry is not None:
                return entry.data

        entry = self.memory.get()
        return entry.data if entry else None

    async def cache(self, digest_id: str, data: dict[str, Any]) -> bool:
        """Store a payload. Returns True if the durable write succeeded (or none is configured)."""
        self.memory.put(digest_id, data)
        if self.durable is None:
            return True
        try:
            await asyncio.to_thread(self.durable.put, digest_id, data)
        except Exception as e:
            logger.warning(f"Durable cache write failed for {digest_id}: {e}")
            return False
        return True

    async def clear(self) -> None:
        """Force regeneration on the next read."""
        self.memory.clear()
        if self.durable is not None:
            deleted = await asyncio.to_thread(self.durable.clear)
            logger.info(f"Cleared {deleted} cached digests")

    async def history(self, limit: int = 10) -> list[CacheEntry]:
        """Recent durable entries, newest first.

        Raises:
            CacheUnavailableError: If no durable store is configured.
        """
        if self.durable is None:
            raise CacheUnavailableError("Durable digest cache not configured. Set DIGEST_DB_PATH.")
        return await asyncio.to_thread(self.durable.history, limit)
