"""Orchestrator: tiered fallback across cache, store, scrapers and AI.

Data flow per request:
  0. Cache read; enough unexpired records -> return (satisfied-from-cache)
  1. Structured store adapters
  2. Scraper adapters, concurrently, each under its own timeout
  3. AI-fallback adapters, only if still below the minimum
  4. Validate -> sanitize -> dedup -> rank the merged set, write the cache,
     log the run, truncate, return

Tiers 1-3 stop as soon as the merged, validated set meets the minimum.
Adapter failures, timeouts and rate limits degrade to the next tier and
show up in ``AggregationResponse.outcomes``; only MalformedQueryError is
raised to the caller.
"""

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aggregator.core.config import CacheConfig, OrchestratorConfig
from aggregator.core.db import insert_aggregation_run
from aggregator.core.errors import RateLimitExceededError, SourceUnavailableError
from aggregator.core.schemas import (
    AdapterOutcome,
    AggregationResponse,
    CacheEntry,
    ContactCandidate,
    JobCandidate,
    JobQuery,
    OutcomeStatus,
    Query,
    RecordKind,
    SourceTier,
    ValidatedRecord,
    parse_query,
)
from aggregator.pipeline.cache import CacheBackend
from aggregator.pipeline.dedup import canonical_key, deduplicate
from aggregator.pipeline.rate_limiter import RateLimiterRegistry
from aggregator.pipeline.sanitizer import sanitize_candidate
from aggregator.pipeline.scorer import rank_records
from aggregator.pipeline.validator import validate_candidate
from aggregator.platforms.base import SourceAdapter

logger = logging.getLogger(__name__)

# Hard stop past an adapter's own budget, so adapters can return partial
# results themselves before being cancelled.
_CANCEL_GRACE_SECONDS = 1.0

_CACHE_ERRORS = (sqlite3.Error, OSError)


@dataclass
class SourcePlan:
    """Adapters serving one query class, grouped by tier."""

    store: list[SourceAdapter] = field(default_factory=list)
    scrapers: list[SourceAdapter] = field(default_factory=list)
    ai: list[SourceAdapter] = field(default_factory=list)

    def tiers(self) -> list[tuple[SourceTier, list[SourceAdapter]]]:
        return [
            (SourceTier.STORE, self.store),
            (SourceTier.SCRAPE, self.scrapers),
            (SourceTier.AI_FALLBACK, self.ai),
        ]

    def adapters(self) -> list[SourceAdapter]:
        return [*self.store, *self.scrapers, *self.ai]


@dataclass
class _WorkingSet:
    """Per-request state. Owned by one aggregate() call, never shared."""

    candidates: list[JobCandidate | ContactCandidate] = field(default_factory=list)
    records: list[ValidatedRecord] = field(default_factory=list)
    rejected: int = 0
    outcomes: list[AdapterOutcome] = field(default_factory=list)
    tier_counts: dict[str, int] = field(default_factory=dict)
    highest: SourceTier = SourceTier.NONE


def process_candidates(
    candidates: list[JobCandidate | ContactCandidate],
) -> tuple[list[ValidatedRecord], int]:
    """Sanitize, validate, dedup and rank. Returns (records, rejected_count).

    Rules run on the sanitized copy so markup cannot hide a placeholder
    company or a listing-page title from the validator.
    """
    accepted: list[ValidatedRecord] = []
    rejected = 0
    for candidate in candidates:
        clean = sanitize_candidate(candidate)
        outcome = validate_candidate(clean)
        if not outcome.accepted:
            rejected += 1
            logger.debug(
                "Rejected %s from %s: %s",
                candidate.kind, candidate.source_id, outcome.reason,
            )
            continue
        accepted.append(ValidatedRecord(
            record=clean,
            confidence=outcome.confidence,
            issues=outcome.issues,
            canonical_key=canonical_key(clean),
        ))
    return rank_records(deduplicate(accepted)), rejected


class Orchestrator:
    """Drives the tiers for one request at a time; safe to share across tasks.

    The cache and the rate limiter registry are the only state shared
    between concurrent requests.
    """

    def __init__(
        self,
        plans: dict[RecordKind, SourcePlan],
        cache: CacheBackend | None,
        config: OrchestratorConfig | None = None,
        cache_config: CacheConfig | None = None,
        rate_limits: RateLimiterRegistry | None = None,
        conn: sqlite3.Connection | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._plans = plans
        self._cache = cache
        self._config = config or OrchestratorConfig()
        self._cache_config = cache_config or CacheConfig()
        self._rate_limits = rate_limits or RateLimiterRegistry({})
        self._conn = conn
        self._clock = clock

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def plan(self, kind: RecordKind) -> SourcePlan:
        return self._plans.get(kind, SourcePlan())

    def describe(self, kind: RecordKind) -> dict[str, list[str]]:
        """Tier -> source ids, in execution order (used by --dry-run)."""
        described = {SourceTier.CACHE.value: ["memory", "sqlite"] if self._cache else []}
        for tier, adapters in self.plan(kind).tiers():
            described[tier.value] = [a.source_id for a in adapters]
        return described

    def ttl_for(self, kind: RecordKind) -> int:
        if kind is RecordKind.JOB:
            return self._cache_config.job_ttl_seconds
        return self._cache_config.contact_ttl_seconds

    async def aggregate_request(self, kind: RecordKind | str, data: dict[str, Any]) -> AggregationResponse:
        """Parse raw request fields, then aggregate. Raises MalformedQueryError."""
        return await self.aggregate(parse_query(kind, data))

    async def aggregate(self, query: Query) -> AggregationResponse:
        started_at = self._clock()
        fingerprint = query.fingerprint()
        minimum = query.min_acceptable

        # Tier 0: cache
        entry = self._cache_get(fingerprint)
        if entry is not None and len(entry.records) >= minimum:
            logger.info(
                "Cache hit for %s query: %d records (satisfied-from-cache)",
                query.kind.value, len(entry.records),
            )
            response = AggregationResponse(
                records=entry.records[: query.max_results],
                source=SourceTier.CACHE,
                cached=True,
                fetched_at=entry.cached_at,
                tier_counts={SourceTier.CACHE.value: len(entry.records)},
            )
            self._log_run(fingerprint, query, response, started_at)
            return response
        if entry is not None:
            logger.info(
                "Cache entry has %d records, below minimum %d; refreshing",
                len(entry.records), minimum,
            )
        else:
            logger.info("Cache miss for %s query", query.kind.value)

        # Tiers 1-3
        work = _WorkingSet()
        seeded = 0
        if entry is not None and entry.records:
            # Under-filled entry: its records join the merge and the write replaces it.
            work.candidates = [r.record for r in entry.records]
            work.records, work.rejected = process_candidates(work.candidates)
            work.tier_counts[SourceTier.CACHE.value] = len(entry.records)
            seeded = len(work.candidates)
        narrowed = self._narrow(query)
        for tier, adapters in self.plan(query.kind).tiers():
            if len(work.records) >= minimum:
                break
            if not adapters:
                continue
            tier_query = query if tier is SourceTier.STORE else narrowed
            if tier is SourceTier.AI_FALLBACK:
                logger.warning(
                    "Only %d of %d records after earlier tiers; invoking AI fallback",
                    len(work.records), minimum,
                )
            batch = await self._run_tier(tier, adapters, tier_query, work.outcomes)
            work.tier_counts[tier.value] = len(batch)
            work.highest = tier
            work.candidates.extend(batch)
            work.records, work.rejected = process_candidates(work.candidates)
            logger.info(
                "Tier %s: %d raw, %d valid unique so far",
                tier.value, len(batch), len(work.records),
            )

        # Tier 4: finalize
        cached = False
        fetched_at = self._clock()
        if not work.records:
            logger.warning("All sources exhausted for %s query: no records", query.kind.value)
            source = SourceTier.NONE
        elif entry is not None and len(work.candidates) == seeded:
            logger.info("Live tiers added nothing; serving %d cached records", len(work.records))
            source = SourceTier.CACHE
            cached = True
            fetched_at = entry.cached_at
        else:
            source = work.highest
            self._cache_set(fingerprint, work.records, self.ttl_for(query.kind))

        response = AggregationResponse(
            records=work.records[: query.max_results],
            source=source,
            cached=cached,
            fetched_at=fetched_at,
            outcomes=work.outcomes,
            rejected_count=work.rejected,
            tier_counts=work.tier_counts,
        )
        logger.info(
            "Aggregation done: %d records (of %d), source=%s, rejected=%d",
            len(response.records), len(work.records), source.value, work.rejected,
        )
        self._log_run(fingerprint, query, response, started_at)
        return response

    async def aclose(self) -> None:
        """Close adapters that hold network clients."""
        for plan in self._plans.values():
            for adapter in plan.adapters():
                closer = getattr(adapter, "aclose", None)
                if closer is not None:
                    await closer()

    # --- Private helpers ---

    def _narrow(self, query: Query) -> Query:
        """Expensive tiers only get the first few keywords."""
        if not isinstance(query, JobQuery):
            return query
        limit = self._config.scraper_keyword_limit
        if len(query.keywords) <= limit:
            return query
        return query.model_copy(update={"keywords": query.keywords[:limit]})

    async def _run_tier(
        self,
        tier: SourceTier,
        adapters: list[SourceAdapter],
        query: Query,
        outcomes: list[AdapterOutcome],
    ) -> list[JobCandidate | ContactCandidate]:
        """Fan out, wait for all or the tier timeout, keep whatever finished."""
        logger.info("Tier %s: running %d adapter(s)", tier.value, len(adapters))
        tasks = [
            asyncio.create_task(self._run_adapter(adapter, tier, query))
            for adapter in adapters
        ]
        done, pending = await asyncio.wait(tasks, timeout=self._config.tier_timeout_seconds)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        batch: list[JobCandidate | ContactCandidate] = []
        for adapter, task in zip(adapters, tasks, strict=True):
            if task in pending:
                logger.warning(
                    "%s timed out at the %.1fs tier boundary",
                    adapter.source_id, self._config.tier_timeout_seconds,
                )
                outcomes.append(AdapterOutcome(
                    source_id=adapter.source_id,
                    tier=tier,
                    status=OutcomeStatus.TIMEOUT,
                    duration_ms=int(self._config.tier_timeout_seconds * 1000),
                    error="tier timeout",
                ))
                continue
            records, outcome = task.result()
            outcomes.append(outcome)
            batch.extend(records)
        return batch

    async def _run_adapter(
        self,
        adapter: SourceAdapter,
        tier: SourceTier,
        query: Query,
    ) -> tuple[list[JobCandidate | ContactCandidate], AdapterOutcome]:
        """Run one adapter. Never raises except on cancellation."""
        source_id = adapter.source_id
        started = time.monotonic()

        def outcome(status: OutcomeStatus, count: int = 0, error: str | None = None) -> AdapterOutcome:
            return AdapterOutcome(
                source_id=source_id,
                tier=tier,
                status=status,
                count=count,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=error,
            )

        budget = self._config.adapter_timeout_seconds
        try:
            await self._rate_limits.get(source_id).acquire()
            records = await asyncio.wait_for(
                adapter.fetch(query, budget),
                timeout=budget + _CANCEL_GRACE_SECONDS,
            )
        except TimeoutError:
            logger.warning("%s timed out after %.1fs", source_id, budget)
            return [], outcome(OutcomeStatus.TIMEOUT, error="timed out")
        except RateLimitExceededError as e:
            if e.limit_type == "upstream":
                self._rate_limits.trip(source_id, e.retry_after)
            logger.warning("%s skipped: %s", source_id, e)
            return [], outcome(OutcomeStatus.RATE_LIMITED, error=str(e))
        except SourceUnavailableError as e:
            logger.warning("%s failed: %s", source_id, e)
            return [], outcome(OutcomeStatus.ERROR, error=str(e))
        except Exception as e:
            logger.warning("%s failed unexpectedly", source_id, exc_info=True)
            return [], outcome(OutcomeStatus.ERROR, error=f"{type(e).__name__}: {e}")

        status = OutcomeStatus.OK if records else OutcomeStatus.EMPTY
        logger.info("%s returned %d records", source_id, len(records))
        return list(records), outcome(status, count=len(records))

    def _cache_get(self, fingerprint: str) -> CacheEntry | None:
        if self._cache is None:
            return None
        try:
            return self._cache.get(fingerprint)
        except _CACHE_ERRORS as e:
            logger.warning("Cache unavailable, treating as miss: %s", e)
            return None

    def _cache_set(self, fingerprint: str, records: list[ValidatedRecord], ttl: int) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set(fingerprint, records, ttl)
        except _CACHE_ERRORS as e:
            logger.warning("Cache write failed: %s", e)
            return
        logger.info("Cached %d records (ttl=%ds)", len(records), ttl)

    def _log_run(
        self,
        fingerprint: str,
        query: Query,
        response: AggregationResponse,
        started_at: datetime,
    ) -> None:
        if self._conn is None:
            return
        try:
            insert_aggregation_run(
                self._conn,
                fingerprint=fingerprint,
                query_class=query.kind.value,
                source=response.source.value,
                record_count=len(response.records),
                rejected_count=response.rejected_count,
                started_at=started_at,
                finished_at=self._clock(),
            )
        except sqlite3.Error as e:
            logger.warning("Failed to record aggregation run: %s", e)


def export_response_json(response: AggregationResponse) -> str:
    """Export a response as a JSON string (records flattened with their scores)."""
    data = {
        "source": response.source.value,
        "cached": response.cached,
        "fetched_at": response.fetched_at.isoformat(),
        "rejected_count": response.rejected_count,
        "tier_counts": response.tier_counts,
        "outcomes": [o.model_dump(mode="json") for o in response.outcomes],
        "records": [
            {
                **r.record.model_dump(mode="json"),
                "confidence": r.confidence,
                "issues": list(r.issues),
                "canonical_key": r.canonical_key,
            }
            for r in response.records
        ],
    }
    return json.dumps(data, indent=2)
