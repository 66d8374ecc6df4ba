"""Collapse records that refer to the same job or person."""

import logging

from aggregator.core.schemas import ContactCandidate, JobCandidate, ValidatedRecord
from aggregator.pipeline.sanitizer import sanitize_url

logger = logging.getLogger(__name__)


def canonical_key(candidate: JobCandidate | ContactCandidate) -> str:
    """Identity of a record: canonical URL for jobs, email or name for contacts."""
    if isinstance(candidate, JobCandidate):
        url = sanitize_url(candidate.url) or candidate.url.strip()
        return f"job:{url}"
    if candidate.email:
        return f"contact:email:{candidate.email.strip().lower()}"
    return f"contact:name:{' '.join(candidate.name.lower().split())}"


def deduplicate(records: list[ValidatedRecord]) -> list[ValidatedRecord]:
    """Keep one record per canonical key.

    The higher-confidence record wins; ties keep the earlier one. Survivors
    hold the position of the first record seen for their key.
    """
    slots: dict[str, int] = {}
    kept: list[ValidatedRecord] = []
    for record in records:
        index = slots.get(record.canonical_key)
        if index is None:
            slots[record.canonical_key] = len(kept)
            kept.append(record)
        elif record.confidence > kept[index].confidence:
            kept[index] = record

    collapsed = len(records) - len(kept)
    if collapsed:
        logger.debug("Deduplication collapsed %d of %d records", collapsed, len(records))
    return kept
