"""Load externally produced records into the structured store.

Records go through the same sanitize -> validate path as aggregated
results, so the store tier never serves garbage.
"""

import logging
import sqlite3
from typing import Any

from pydantic import ValidationError

from aggregator.core.db import upsert_contact, upsert_job
from aggregator.core.schemas import ContactCandidate, JobCandidate, RecordKind
from aggregator.pipeline.sanitizer import sanitize_contact, sanitize_job
from aggregator.pipeline.validator import ValidationOutcome, validate_contact, validate_job

logger = logging.getLogger(__name__)


def ingest_records(
    conn: sqlite3.Connection,
    kind: RecordKind,
    items: list[dict[str, Any]],
    source: str = "ingest",
) -> tuple[int, int]:
    """Sanitize, validate and upsert raw record dicts. Returns (stored, rejected)."""
    stored = 0
    rejected = 0
    for item in items:
        try:
            if kind is RecordKind.JOB:
                job = sanitize_job(JobCandidate.model_validate({"source_id": source, **item, "kind": "job"}))
                outcome = validate_job(job)
                if outcome.accepted:
                    upsert_job(conn, {
                        **job.model_dump(exclude={"kind", "source_id", "raw_confidence", "fetched_at"}),
                        "work_type": item.get("work_type", ""),
                        "source": job.source_id,
                    })
            else:
                contact = sanitize_contact(
                    ContactCandidate.model_validate({"source_id": source, **item, "kind": "contact"}),
                )
                outcome = validate_contact(contact)
                if outcome.accepted and not contact.company:
                    outcome = ValidationOutcome(accepted=False, reason="missing company")
                if outcome.accepted:
                    upsert_contact(conn, contact.model_dump(
                        exclude={"kind", "source_id", "raw_confidence", "fetched_at"},
                    ))
        except ValidationError as e:
            rejected += 1
            logger.debug("Rejected malformed %s record: %s", kind.value, e)
            continue

        if outcome.accepted:
            stored += 1
        else:
            rejected += 1
            logger.debug("Rejected %s record: %s", kind.value, outcome.reason)

    logger.info("Ingested %d %s records (%d rejected)", stored, kind.value, rejected)
    return stored, rejected
