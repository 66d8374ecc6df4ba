"""Tests for the memory, SQLite and tiered cache backends."""

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from aggregator.core.db import get_cache_row, init_db
from aggregator.core.schemas import JobCandidate, ValidatedRecord
from aggregator.pipeline.cache import MemoryCache, SqliteCache, TieredCache

T0 = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    return init_db(tmp_path / "test.db")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _records(n: int = 2) -> list[ValidatedRecord]:
    return [
        ValidatedRecord(
            record=JobCandidate(source_id="s", title=f"Job {i}", url=f"https://x.org/{i}", fetched_at=T0),
            confidence=80,
            canonical_key=f"job:https://x.org/{i}",
        )
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# MemoryCache
# ---------------------------------------------------------------------------


class TestMemoryCache:
    def test_set_and_get(self, clock: FakeClock) -> None:
        cache = MemoryCache(clock=clock)
        cache.set("fp", _records(), 60)
        entry = cache.get("fp")
        assert entry is not None
        assert len(entry.records) == 2
        assert entry.cached_at == T0
        assert entry.expires_at == T0 + timedelta(seconds=60)

    def test_miss(self, clock: FakeClock) -> None:
        assert MemoryCache(clock=clock).get("nope") is None

    def test_expired_entry_never_returned(self, clock: FakeClock) -> None:
        cache = MemoryCache(clock=clock)
        cache.set("fp", _records(), 60)
        clock.advance(60)
        assert cache.get("fp") is None
        assert len(cache) == 0

    def test_ttl_zero_stores_nothing_and_clears(self, clock: FakeClock) -> None:
        cache = MemoryCache(clock=clock)
        cache.set("fp", _records(), 60)
        cache.set("fp", _records(), 0)
        assert cache.get("fp") is None

    def test_set_overwrites(self, clock: FakeClock) -> None:
        cache = MemoryCache(clock=clock)
        cache.set("fp", _records(3), 60)
        cache.set("fp", _records(1), 60)
        entry = cache.get("fp")
        assert entry is not None
        assert len(entry.records) == 1

    def test_evicts_oldest_when_full(self, clock: FakeClock) -> None:
        cache = MemoryCache(max_entries=2, clock=clock)
        cache.set("a", _records(), 60)
        cache.set("b", _records(), 60)
        cache.set("c", _records(), 60)
        assert cache.get("a") is None
        assert cache.get("b") is not None
        assert cache.get("c") is not None

    def test_sweep(self, clock: FakeClock) -> None:
        cache = MemoryCache(clock=clock)
        cache.set("short", _records(), 10)
        cache.set("long", _records(), 100)
        clock.advance(50)
        assert cache.sweep() == 1
        assert len(cache) == 1

    def test_lazy_sweep_on_write(self, clock: FakeClock) -> None:
        cache = MemoryCache(sweep_interval=0, clock=clock)
        cache.set("short", _records(), 10)
        clock.advance(20)
        cache.set("other", _records(), 100)
        assert len(cache) == 1


# ---------------------------------------------------------------------------
# SqliteCache
# ---------------------------------------------------------------------------


class TestSqliteCache:
    def test_round_trip(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        cache = SqliteCache(db, clock=clock)
        records = _records()
        cache.set("fp", records, 60)
        entry = cache.get("fp")
        assert entry is not None
        assert entry.records == records
        assert entry.cached_at == T0

    def test_survives_new_instance(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        SqliteCache(db, clock=clock).set("fp", _records(), 60)
        assert SqliteCache(db, clock=clock).get("fp") is not None

    def test_expired_deleted_on_read(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        cache = SqliteCache(db, clock=clock)
        cache.set("fp", _records(), 60)
        clock.advance(61)
        assert cache.get("fp") is None
        assert get_cache_row(db, "fp") is None

    def test_ttl_zero_deletes_row(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        cache = SqliteCache(db, clock=clock)
        cache.set("fp", _records(), 60)
        cache.set("fp", _records(), 0)
        assert get_cache_row(db, "fp") is None

    def test_unreadable_payload_discarded(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        cache = SqliteCache(db, clock=clock)
        cache.set("fp", _records(), 60)
        db.execute("UPDATE cache_entries SET payload = ? WHERE fingerprint = ?", ('[{"bad": 1}]', "fp"))
        db.commit()
        assert cache.get("fp") is None
        assert get_cache_row(db, "fp") is None

    def test_sweep(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        cache = SqliteCache(db, clock=clock)
        cache.set("short", _records(), 10)
        cache.set("long", _records(), 100)
        clock.advance(50)
        assert cache.sweep() == 1


# ---------------------------------------------------------------------------
# TieredCache
# ---------------------------------------------------------------------------


class TestTieredCache:
    def test_durable_hit_promoted(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        fast = MemoryCache(clock=clock)
        durable = SqliteCache(db, clock=clock)
        durable.set("fp", _records(), 60)
        tiered = TieredCache(fast, durable)

        entry = tiered.get("fp")
        assert entry is not None
        promoted = fast.get("fp")
        assert promoted is not None
        assert promoted.expires_at == entry.expires_at

    def test_write_goes_to_both(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        fast = MemoryCache(clock=clock)
        durable = SqliteCache(db, clock=clock)
        TieredCache(fast, durable).set("fp", _records(), 60)
        assert fast.get("fp") is not None
        assert durable.get("fp") is not None

    def test_memory_only(self, clock: FakeClock) -> None:
        tiered = TieredCache(MemoryCache(clock=clock))
        tiered.set("fp", _records(), 60)
        assert tiered.get("fp") is not None
        tiered.delete("fp")
        assert tiered.get("fp") is None

    def test_durable_read_failure_is_miss(self, clock: FakeClock) -> None:
        durable = MagicMock()
        durable.get.side_effect = sqlite3.OperationalError("database is locked")
        assert TieredCache(MemoryCache(clock=clock), durable).get("fp") is None

    def test_durable_write_failure_tolerated(self, clock: FakeClock) -> None:
        fast = MemoryCache(clock=clock)
        durable = MagicMock()
        durable.set.side_effect = sqlite3.OperationalError("disk I/O error")
        TieredCache(fast, durable).set("fp", _records(), 60)
        assert fast.get("fp") is not None

    def test_sweep_counts_both(self, db: sqlite3.Connection, clock: FakeClock) -> None:
        tiered = TieredCache(MemoryCache(clock=clock), SqliteCache(db, clock=clock))
        tiered.set("fp", _records(), 10)
        clock.advance(20)
        assert tiered.sweep() == 2
