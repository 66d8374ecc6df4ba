"""Structured store adapter: indexed SQLite jobs and contacts tables."""

import logging
import sqlite3
from datetime import datetime

from aggregator.core.db import query_contacts, query_jobs
from aggregator.core.errors import SourceUnavailableError
from aggregator.core.schemas import (
    ContactCandidate,
    ContactQuery,
    JobCandidate,
    JobQuery,
    Query,
    SourceTier,
)
from aggregator.platforms.base import SourceAdapter

logger = logging.getLogger(__name__)


class StoreAdapter(SourceAdapter):
    """Reads previously ingested records. Sub-100ms class, so no timeout handling."""

    def __init__(
        self,
        source_id: str,
        conn: sqlite3.Connection,
        *,
        limit: int = 100,
        raw_confidence: float = 90.0,
    ) -> None:
        self._source_id = source_id
        self._conn = conn
        self._limit = limit
        self._raw_confidence = raw_confidence

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def tier(self) -> SourceTier:
        return SourceTier.STORE

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        try:
            if isinstance(query, JobQuery):
                return list(self._fetch_jobs(query))
            return list(self._fetch_contacts(query))
        except sqlite3.Error as e:
            raise SourceUnavailableError(self._source_id, f"store query failed: {e}") from e

    def _fetch_jobs(self, query: JobQuery) -> list[JobCandidate]:
        rows = query_jobs(
            self._conn,
            list(query.keywords),
            location=query.location,
            work_type=query.work_type.value,
            limit=self._limit,
        )
        now = datetime.now()
        jobs = [
            JobCandidate(
                source_id=self._source_id,
                raw_confidence=self._raw_confidence,
                fetched_at=now,
                title=row["title"],
                company=row["company"],
                location=row["location"],
                url=row["url"],
                description=row["description"],
                salary=row["salary"],
                posted_at=row["posted_at"],
            )
            for row in rows
        ]
        logger.debug("%s: %d jobs from store", self._source_id, len(jobs))
        return jobs

    def _fetch_contacts(self, query: ContactQuery) -> list[ContactCandidate]:
        rows = query_contacts(self._conn, query.company_name, limit=self._limit)
        now = datetime.now()
        contacts = [
            ContactCandidate(
                source_id=self._source_id,
                raw_confidence=self._raw_confidence,
                fetched_at=now,
                name=row["name"],
                title=row["title"],
                email=row["email"],
                phone=row["phone"],
                linkedin_url=row["linkedin_url"],
                department=row["department"],
                company=row["company"],
                company_website=row["company_website"],
                industry=row["industry"],
                employee_count=row["employee_count"],
                rating=row["rating"],
            )
            for row in rows
        ]
        logger.debug("%s: %d contacts from store", self._source_id, len(contacts))
        return contacts
