"""Cache layer: fast in-memory tier in front of a durable SQLite tier.

Both tiers honor the same contract: ``get`` returns an unexpired
CacheEntry or None, ``set`` fully overwrites the entry for a fingerprint.
Expiry is enforced at read time; ``sweep`` removes expired entries lazily.
"""

import json
import logging
import sqlite3
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from aggregator.core.db import delete_cache_row, get_cache_row, put_cache_row, sweep_cache_rows
from aggregator.core.schemas import CacheEntry, ValidatedRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_RECORDS_ADAPTER = TypeAdapter(list[ValidatedRecord])


class CacheBackend(Protocol):
    """Key-value store of CacheEntry objects keyed by query fingerprint."""

    def get(self, fingerprint: str) -> CacheEntry | None: ...

    def set(self, fingerprint: str, records: list[ValidatedRecord], ttl_seconds: float) -> None: ...

    def delete(self, fingerprint: str) -> None: ...

    def sweep(self) -> int: ...


def _build_entry(
    fingerprint: str,
    records: list[ValidatedRecord],
    ttl_seconds: float,
    now: datetime,
) -> CacheEntry | None:
    """New entry expiring ``ttl_seconds`` from now, or None when TTL <= 0."""
    if ttl_seconds <= 0:
        return None
    return CacheEntry(
        fingerprint=fingerprint,
        records=list(records),
        cached_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )


class MemoryCache:
    """Bounded in-process cache. Safe for concurrent readers and writers.

    Evicts the least recently written entry when full. Expired entries are
    dropped on read and by a lazy sweep that runs on writes once
    ``sweep_interval`` seconds have passed since the last one.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        sweep_interval: float = 300.0,
        clock: Clock = datetime.now,
    ) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._last_sweep = time.monotonic()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, fingerprint: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[fingerprint]
                return None
            return entry

    def set(self, fingerprint: str, records: list[ValidatedRecord], ttl_seconds: float) -> None:
        entry = _build_entry(fingerprint, records, ttl_seconds, self._clock())
        with self._lock:
            self._entries.pop(fingerprint, None)
            if entry is not None:
                self._entries[fingerprint] = entry
                while len(self._entries) > self._max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("Memory cache full, evicted %s", evicted[:12])
        if time.monotonic() - self._last_sweep >= self._sweep_interval:
            self.sweep()

    def put_entry(self, entry: CacheEntry) -> None:
        """Store an existing entry unchanged (used when promoting from the durable tier)."""
        with self._lock:
            self._entries.pop(entry.fingerprint, None)
            self._entries[entry.fingerprint] = entry

    def delete(self, fingerprint: str) -> None:
        with self._lock:
            self._entries.pop(fingerprint, None)

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [fp for fp, e in self._entries.items() if e.is_expired(now)]
            for fp in expired:
                del self._entries[fp]
            self._last_sweep = time.monotonic()
        if expired:
            logger.debug("Memory cache sweep removed %d entries", len(expired))
        return len(expired)


class SqliteCache:
    """Durable cache tier in the ``cache_entries`` table.

    Records are stored as a JSON array; each write is one upsert so an entry
    is always replaced as a whole.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Clock = datetime.now) -> None:
        self._conn = conn
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> CacheEntry | None:
        with self._lock:
            row = get_cache_row(self._conn, fingerprint)
            if row is None:
                return None
            expires_at = datetime.fromisoformat(row["expires_at"])
            if self._clock() >= expires_at:
                delete_cache_row(self._conn, fingerprint)
                return None
        try:
            records = _RECORDS_ADAPTER.validate_json(row["payload"])
        except ValidationError as e:
            logger.warning("Discarding unreadable cache entry %s: %s", fingerprint[:12], e)
            self.delete(fingerprint)
            return None
        return CacheEntry(
            fingerprint=fingerprint,
            records=records,
            cached_at=datetime.fromisoformat(row["cached_at"]),
            expires_at=expires_at,
        )

    def set(self, fingerprint: str, records: list[ValidatedRecord], ttl_seconds: float) -> None:
        entry = _build_entry(fingerprint, records, ttl_seconds, self._clock())
        with self._lock:
            if entry is None:
                delete_cache_row(self._conn, fingerprint)
                return
            payload = json.dumps([r.model_dump(mode="json") for r in entry.records])
            put_cache_row(self._conn, fingerprint, payload, entry.cached_at, entry.expires_at)

    def delete(self, fingerprint: str) -> None:
        with self._lock:
            delete_cache_row(self._conn, fingerprint)

    def sweep(self) -> int:
        with self._lock:
            removed = sweep_cache_rows(self._conn, self._clock())
        if removed:
            logger.info("Durable cache sweep removed %d entries", removed)
        return removed


class TieredCache:
    """Read fast tier first, then durable tier; write both.

    A backend that raises is logged and treated as a miss (reads) or a
    no-op (writes). A durable hit is promoted into the fast tier with its
    original expiry.
    """

    def __init__(self, fast: MemoryCache, durable: CacheBackend | None = None) -> None:
        self._fast = fast
        self._durable = durable

    def get(self, fingerprint: str) -> CacheEntry | None:
        entry = self._safe_get(self._fast, fingerprint, "memory")
        if entry is not None:
            return entry
        if self._durable is None:
            return None
        entry = self._safe_get(self._durable, fingerprint, "durable")
        if entry is not None:
            self._fast.put_entry(entry)
        return entry

    def set(self, fingerprint: str, records: list[ValidatedRecord], ttl_seconds: float) -> None:
        backends: list[tuple[str, CacheBackend]] = [("memory", self._fast)]
        if self._durable is not None:
            backends.append(("durable", self._durable))
        for name, backend in backends:
            try:
                backend.set(fingerprint, records, ttl_seconds)
            except (sqlite3.Error, OSError) as e:
                logger.warning("Cache write to %s tier failed: %s", name, e)

    def delete(self, fingerprint: str) -> None:
        self._fast.delete(fingerprint)
        if self._durable is not None:
            try:
                self._durable.delete(fingerprint)
            except (sqlite3.Error, OSError) as e:
                logger.warning("Cache delete on durable tier failed: %s", e)

    def sweep(self) -> int:
        removed = self._fast.sweep()
        if self._durable is not None:
            try:
                removed += self._durable.sweep()
            except (sqlite3.Error, OSError) as e:
                logger.warning("Durable cache sweep failed: %s", e)
        return removed

    @staticmethod
    def _safe_get(backend: CacheBackend, fingerprint: str, name: str) -> CacheEntry | None:
        try:
            return backend.get(fingerprint)
        except (sqlite3.Error, OSError, ValueError) as e:
            logger.warning("Cache read from %s tier failed, treating as miss: %s", name, e)
            return None
