"""Core data models: queries, candidate records, validated records, cache entries."""

import hashlib
import json
import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from aggregator.core.errors import MalformedQueryError


class RecordKind(str, Enum):
    JOB = "job"
    CONTACT = "contact"


class WorkType(str, Enum):
    REMOTE = "remote"
    HYBRID = "hybrid"
    ONSITE = "onsite"
    ANY = "any"


class SourceTier(str, Enum):
    """Tier that produced a response. Ordered by priority."""

    CACHE = "cache"
    STORE = "store"
    SCRAPE = "scrape"
    AI_FALLBACK = "ai-fallback"
    NONE = "none"


class OutcomeStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    TIMEOUT = "timeout"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def normalize_location(location: str | None) -> str:
    """Lower-case, collapse whitespace, canonical comma spacing, no trailing punctuation."""
    if not location:
        return ""
    text = " ".join(location.split()).lower()
    text = re.sub(r"\s*,\s*", ", ", text)
    return text.strip(" .,;")


def _digest(document: dict[str, Any]) -> str:
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class JobQuery(BaseModel):
    """Job search request: keywords + optional location and work type."""

    model_config = ConfigDict(frozen=True)

    keywords: tuple[str, ...]
    location: str | None = None
    work_type: WorkType = WorkType.ANY
    max_results: int = Field(default=25, ge=1)
    min_acceptable: int = Field(default=10, ge=1)
    filters: dict[str, str] = Field(default_factory=dict)

    @field_validator("keywords", mode="before")
    @classmethod
    def clean_keywords(cls, v: Any) -> tuple[str, ...]:
        if isinstance(v, str):
            v = [v]
        cleaned = tuple(k.strip() for k in (v or ()) if isinstance(k, str) and k.strip())
        if not cleaned:
            msg = "at least one keyword is required"
            raise ValueError(msg)
        return cleaned

    @property
    def kind(self) -> RecordKind:
        return RecordKind.JOB

    def fingerprint(self) -> str:
        """Order-independent hash of the semantic fields (limits excluded)."""
        return _digest({
            "class": self.kind.value,
            "keywords": sorted({k.lower() for k in self.keywords}),
            "location": normalize_location(self.location),
            "work_type": self.work_type.value,
            "filters": {k.lower(): str(v).lower() for k, v in self.filters.items()},
        })


class ContactQuery(BaseModel):
    """Contact discovery request for a single company."""

    model_config = ConfigDict(frozen=True)

    company_name: str
    company_website: str | None = None
    linkedin_company_url: str | None = None
    target_title_hint: str | None = None
    max_results: int = Field(default=25, ge=1)
    min_acceptable: int = Field(default=5, ge=1)

    @field_validator("company_name")
    @classmethod
    def company_required(cls, v: str) -> str:
        if not v.strip():
            msg = "company_name is required"
            raise ValueError(msg)
        return v.strip()

    @property
    def kind(self) -> RecordKind:
        return RecordKind.CONTACT

    @property
    def keywords(self) -> tuple[str, ...]:
        return (self.company_name,)

    def fingerprint(self) -> str:
        website = (self.company_website or "").strip().lower().rstrip("/")
        return _digest({
            "class": self.kind.value,
            "company": " ".join(self.company_name.lower().split()),
            "website": website,
            "linkedin": (self.linkedin_company_url or "").strip().lower().rstrip("/"),
            "title_hint": (self.target_title_hint or "").strip().lower(),
        })


Query = JobQuery | ContactQuery


def parse_query(kind: RecordKind | str, data: dict[str, Any]) -> Query:
    """Build a query from raw request fields, raising MalformedQueryError on bad input."""
    model = JobQuery if RecordKind(kind) is RecordKind.JOB else ContactQuery
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedQueryError(f"Malformed {RecordKind(kind).value} query: {e}") from e


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class _CandidateBase(BaseModel):
    """Fields every adapter populates. Frozen: adapters never mutate after emit."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    raw_confidence: float = Field(default=50.0, ge=0.0, le=100.0)
    fetched_at: datetime = Field(default_factory=datetime.now)


class JobCandidate(_CandidateBase):
    """A job posting as produced by one source adapter."""

    kind: Literal["job"] = "job"
    title: str = ""
    company: str = ""
    location: str = ""
    url: str = ""
    description: str = ""
    salary: str | None = None
    posted_at: str | None = None


class ContactCandidate(_CandidateBase):
    """A company contact, with optional company context used for scoring."""

    kind: Literal["contact"] = "contact"
    name: str = ""
    title: str = ""
    email: str | None = None
    phone: str | None = None
    linkedin_url: str | None = None
    department: str | None = None
    company: str = ""
    company_website: str | None = None
    industry: str | None = None
    employee_count: int | None = None
    rating: float | None = None


Candidate = Annotated[JobCandidate | ContactCandidate, Field(discriminator="kind")]


class ValidatedRecord(BaseModel):
    """Wrapper pairing a sanitized candidate with its recomputed confidence."""

    model_config = ConfigDict(frozen=True)

    record: Candidate
    confidence: float = Field(ge=0.0, le=100.0)
    issues: tuple[str, ...] = ()
    canonical_key: str

    @property
    def fetched_at(self) -> datetime:
        return self.record.fetched_at

    @property
    def source_id(self) -> str:
        return self.record.source_id


class CacheEntry(BaseModel):
    """Validated records cached under a query fingerprint."""

    fingerprint: str
    records: list[ValidatedRecord]
    cached_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def expiry_after_cached(self) -> "CacheEntry":
        if self.expires_at <= self.cached_at:
            msg = "expires_at must be later than cached_at"
            raise ValueError(msg)
        return self

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class AdapterOutcome(BaseModel):
    """What happened to a single adapter invocation."""

    source_id: str
    tier: SourceTier
    status: OutcomeStatus
    count: int = 0
    duration_ms: int = 0
    error: str | None = None


class AggregationResponse(BaseModel):
    """Ranked, deduplicated result of one aggregation request."""

    records: list[ValidatedRecord]
    source: SourceTier
    cached: bool
    fetched_at: datetime = Field(default_factory=datetime.now)
    outcomes: list[AdapterOutcome] = Field(default_factory=list)
    rejected_count: int = 0
    tier_counts: dict[str, int] = Field(default_factory=dict)
