"""Confidence scoring and ranking for validated records.

Confidence range: 0-100 (clamped). Each record kind has a base score and
a table of field bonuses; a field earns its bonus only when populated.
"""

import logging
from collections.abc import Iterable, Mapping

from aggregator.core.schemas import ContactCandidate, JobCandidate, ValidatedRecord

logger = logging.getLogger(__name__)

JOB_BASE_CONFIDENCE = 80.0
CONTACT_BASE_CONFIDENCE = 50.0

# Adapters at or above this raw confidence count as trusted sources.
TRUSTED_SOURCE_THRESHOLD = 70.0
LONG_DESCRIPTION_LENGTH = 200
ROLE_EMAIL_PENALTY = 15.0

JOB_FIELD_WEIGHTS: dict[str, float] = {
    "salary": 5.0,
    "trusted_source": 5.0,
    "posted_at": 5.0,
    "long_description": 5.0,
}

CONTACT_FIELD_WEIGHTS: dict[str, float] = {
    "email": 10.0,
    "linkedin_url": 10.0,
    "phone": 5.0,
    "title": 5.0,
    "department": 5.0,
    "company_website": 5.0,
    "industry": 5.0,
    "employee_count": 5.0,
    "rating": 5.0,
}


def score_fields(base: float, weights: Mapping[str, float], present: Iterable[str]) -> float:
    """Sum the base and the weight of each present field, clamped to 0-100."""
    score = base + sum(weights.get(name, 0.0) for name in set(present))
    return max(0.0, min(100.0, score))


def job_confidence(job: JobCandidate) -> float:
    present = []
    if job.salary:
        present.append("salary")
    if job.raw_confidence >= TRUSTED_SOURCE_THRESHOLD:
        present.append("trusted_source")
    if job.posted_at:
        present.append("posted_at")
    if len(job.description.strip()) > LONG_DESCRIPTION_LENGTH:
        present.append("long_description")
    return score_fields(JOB_BASE_CONFIDENCE, JOB_FIELD_WEIGHTS, present)


def contact_confidence(contact: ContactCandidate, *, role_email: bool = False) -> float:
    present = [
        name for name in CONTACT_FIELD_WEIGHTS
        if getattr(contact, name) not in (None, "")
    ]
    score = score_fields(CONTACT_BASE_CONFIDENCE, CONTACT_FIELD_WEIGHTS, present)
    if role_email:
        score = max(0.0, score - ROLE_EMAIL_PENALTY)
    return score


def rank_records(records: list[ValidatedRecord]) -> list[ValidatedRecord]:
    """Sort by confidence desc, then freshness desc. Stable for full ties."""
    return sorted(
        records,
        key=lambda r: (-r.confidence, -r.fetched_at.timestamp()),
    )
