"""Tests for the structured store adapter."""

import sqlite3
from pathlib import Path

import pytest

from aggregator.core.db import init_db, upsert_contact, upsert_job
from aggregator.core.errors import SourceUnavailableError
from aggregator.core.schemas import ContactCandidate, ContactQuery, JobCandidate, JobQuery, SourceTier
from aggregator.platforms.store import StoreAdapter


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    conn = init_db(tmp_path / "test.db")
    upsert_job(conn, {
        "url": "https://x.org/1",
        "title": "Registered Nurse",
        "company": "General Hospital",
        "location": "Toronto, ON",
        "description": "Ward nursing",
        "work_type": "onsite",
        "salary": "$40/hr",
    })
    upsert_contact(conn, {
        "company": "Acme",
        "name": "Jane Doe",
        "email": "jane@acme.com",
        "employee_count": 120,
    })
    return conn


class TestStoreAdapter:
    async def test_jobs(self, db: sqlite3.Connection) -> None:
        adapter = StoreAdapter("local", db, raw_confidence=90)
        records = await adapter.fetch(JobQuery(keywords=["nurse"], location="Toronto"), 1.0)
        assert len(records) == 1
        job = records[0]
        assert isinstance(job, JobCandidate)
        assert job.source_id == "local"
        assert job.raw_confidence == 90
        assert job.salary == "$40/hr"

    async def test_contacts(self, db: sqlite3.Connection) -> None:
        adapter = StoreAdapter("local", db)
        records = await adapter.fetch(ContactQuery(company_name="ACME"), 1.0)
        assert len(records) == 1
        contact = records[0]
        assert isinstance(contact, ContactCandidate)
        assert contact.email == "jane@acme.com"
        assert contact.employee_count == 120

    async def test_no_match_is_empty(self, db: sqlite3.Connection) -> None:
        adapter = StoreAdapter("local", db)
        assert await adapter.fetch(JobQuery(keywords=["astronaut"]), 1.0) == []

    async def test_limit(self, db: sqlite3.Connection) -> None:
        upsert_job(db, {"url": "https://x.org/2", "title": "Nurse Lead", "work_type": "onsite"})
        adapter = StoreAdapter("local", db, limit=1)
        assert len(await adapter.fetch(JobQuery(keywords=["nurse"]), 1.0)) == 1

    async def test_sqlite_error_becomes_unavailable(self, db: sqlite3.Connection) -> None:
        db.close()
        adapter = StoreAdapter("local", db)
        with pytest.raises(SourceUnavailableError):
            await adapter.fetch(JobQuery(keywords=["nurse"]), 1.0)

    def test_tier(self, db: sqlite3.Connection) -> None:
        assert StoreAdapter("local", db).tier is SourceTier.STORE
