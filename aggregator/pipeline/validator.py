"""Validation rules for job and contact candidates.

A validator never mutates its input. It returns a ValidationOutcome that
either rejects the record (``accepted=False``) or accepts it with a
confidence score and a list of non-fatal issues.

Companion checks used by the contact adapters live here too:
``validate_email``, ``validate_company``, ``extract_emails``.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

from aggregator.core.schemas import ContactCandidate, JobCandidate
from aggregator.pipeline.sanitizer import sanitize_phone, sanitize_url
from aggregator.pipeline.scorer import contact_confidence, job_confidence

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 5
MIN_LOCATION_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 50

# Titles and URLs of search-result pages that scrapers sometimes mistake for postings.
_LISTING_TITLE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\d+\s+.*jobs", re.IGNORECASE),
    re.compile(r"^\d+\s+positions", re.IGNORECASE),
    re.compile(r"job\s+search\s+results", re.IGNORECASE),
    re.compile(r"search\s+results\s+for", re.IGNORECASE),
    re.compile(r"jobs\s+found", re.IGNORECASE),
)

_LISTING_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[?&]q=", re.IGNORECASE),
    re.compile(r"/jobs\?", re.IGNORECASE),
    re.compile(r"/jobsearch\?", re.IGNORECASE),
    re.compile(r"/job-search\?", re.IGNORECASE),
    re.compile(r"/search\?", re.IGNORECASE),
    re.compile(r"/browse/", re.IGNORECASE),
)

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_EMAIL_SEARCH_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

DISPOSABLE_DOMAINS = frozenset({
    "tempmail.com",
    "10minutemail.com",
    "guerrillamail.com",
    "mailinator.com",
    "yopmail.com",
    "throwaway.email",
    "temp-mail.org",
    "getnada.com",
})

PLACEHOLDER_DOMAINS = frozenset({"example.com", "example.org", "example.net"})

FAKE_LOCAL_PARTS = frozenset({
    "noreply", "no-reply", "test", "example", "demo", "sample", "fake", "placeholder",
})

ROLE_LOCAL_PARTS = frozenset({
    "info", "admin", "support", "sales", "contact", "help", "service",
    "team", "jobs", "careers", "hr", "recruiting",
})

INVALID_COMPANY_NAMES = frozenset({
    "unknown", "confidential", "n/a", "na", "not available", "not specified",
    "tbd", "to be determined", "unnamed", "anonymous", "[redacted]",
    "private", "undisclosed",
})

_GENERIC_COMPANY_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"company\s+name", re.IGNORECASE),
    re.compile(r"employer\s+name", re.IGNORECASE),
    re.compile(r"hiring\s+company", re.IGNORECASE),
    re.compile(r"recruiting\s+firm", re.IGNORECASE),
    re.compile(r"staffing\s+agency", re.IGNORECASE),
    re.compile(r"^temp\s", re.IGNORECASE),
    re.compile(r"^contract\s", re.IGNORECASE),
)

_COMPANY_SUFFIX_RE = re.compile(
    r"[,\s]+(inc|ltd|llc|corp|corporation|company|co)\.?$", re.IGNORECASE,
)

_LINKEDIN_PROFILE_RE = re.compile(r"^https?://([a-z]+\.)?linkedin\.com/", re.IGNORECASE)


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating one candidate."""

    accepted: bool
    confidence: float = 0.0
    issues: tuple[str, ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class EmailCheck:
    """Result of validating one email address."""

    valid: bool
    email: str = ""
    kind: Literal["personal", "role", "invalid"] = "invalid"
    confidence: float = 0.0
    issues: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class CompanyCheck:
    """Result of validating a company name plus optional context."""

    valid: bool
    confidence: float = 0.0
    issues: tuple[str, ...] = field(default_factory=tuple)


def _reject(reason: str) -> ValidationOutcome:
    return ValidationOutcome(accepted=False, reason=reason, issues=(reason,))


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


def is_listing_page(title: str, url: str) -> bool:
    """True when the title or URL looks like a search-results page."""
    if any(p.search(title) for p in _LISTING_TITLE_PATTERNS):
        return True
    return any(p.search(url) for p in _LISTING_URL_PATTERNS)


def validate_job(job: JobCandidate) -> ValidationOutcome:
    """Apply the job rules; compute confidence for accepted jobs."""
    title = job.title.strip()
    if len(title) < MIN_TITLE_LENGTH:
        return _reject("title too short")
    if is_listing_page(title, job.url):
        return _reject("listing page")

    company = validate_company(job.company)
    if not company.valid:
        return _reject(company.issues[0])

    if sanitize_url(job.url) is None:
        return _reject("invalid url")
    if len(job.location.strip()) < MIN_LOCATION_LENGTH:
        return _reject("location too short")
    if len(job.description.strip()) < MIN_DESCRIPTION_LENGTH:
        return _reject("description too short")

    issues: list[str] = []
    if not job.salary:
        issues.append("missing salary")
    if not job.posted_at:
        issues.append("missing posted date")

    return ValidationOutcome(
        accepted=True,
        confidence=job_confidence(job),
        issues=tuple(issues),
    )


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def validate_contact(contact: ContactCandidate) -> ValidationOutcome:
    """Apply the contact rules; compute confidence for accepted contacts."""
    name = contact.name.strip()
    if not name:
        return _reject("missing name")
    if name.lower() in INVALID_COMPANY_NAMES:
        return _reject("placeholder name")

    issues: list[str] = []
    role_email = False
    if contact.email:
        check = validate_email(contact.email)
        if not check.valid:
            return _reject(check.issues[0] if check.issues else "invalid email")
        role_email = check.kind == "role"
        issues.extend(check.issues)

    if contact.phone and sanitize_phone(contact.phone) is None:
        issues.append("invalid phone")
    if contact.linkedin_url and (
        sanitize_url(contact.linkedin_url) is None
        or not _LINKEDIN_PROFILE_RE.match(contact.linkedin_url.strip())
    ):
        issues.append("invalid linkedin url")
    if contact.company_website and sanitize_url(contact.company_website) is None:
        issues.append("invalid company website")
    if not contact.email and not contact.linkedin_url and not contact.phone:
        issues.append("no direct contact channel")

    return ValidationOutcome(
        accepted=True,
        confidence=contact_confidence(contact, role_email=role_email),
        issues=tuple(issues),
    )


def validate_candidate(candidate: JobCandidate | ContactCandidate) -> ValidationOutcome:
    if isinstance(candidate, JobCandidate):
        return validate_job(candidate)
    return validate_contact(candidate)


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


def validate_email(email: str) -> EmailCheck:
    """Classify an address as personal, role-based or invalid."""
    cleaned = email.strip().lower()
    if cleaned.startswith("mailto:"):
        cleaned = cleaned[len("mailto:"):]
    if not _EMAIL_RE.match(cleaned):
        return EmailCheck(valid=False, email=cleaned, issues=("invalid email format",))

    local, domain = cleaned.rsplit("@", 1)
    if domain in DISPOSABLE_DOMAINS:
        return EmailCheck(valid=False, email=cleaned, issues=("disposable email domain",))
    if domain in PLACEHOLDER_DOMAINS or local in FAKE_LOCAL_PARTS:
        return EmailCheck(valid=False, email=cleaned, issues=("placeholder email",))

    if local in ROLE_LOCAL_PARTS:
        return EmailCheck(
            valid=True, email=cleaned, kind="role", confidence=60.0,
            issues=("role-based email",),
        )
    return EmailCheck(valid=True, email=cleaned, kind="personal", confidence=95.0)


def extract_emails(text: str) -> list[str]:
    """Return distinct valid addresses found in free text, in order of appearance."""
    seen: set[str] = set()
    found: list[str] = []
    for match in _EMAIL_SEARCH_RE.findall(text or ""):
        check = validate_email(match)
        if check.valid and check.email not in seen:
            seen.add(check.email)
            found.append(check.email)
    return found


def name_from_email(email: str) -> str:
    """Best-effort display name from a personal address: jane.doe@x -> Jane Doe."""
    local = email.split("@", 1)[0]
    parts = [p for p in re.split(r"[._\-+]+", local) if p and not p.isdigit()]
    return " ".join(p.capitalize() for p in parts)


# ---------------------------------------------------------------------------
# Company
# ---------------------------------------------------------------------------


def normalize_company_name(name: str) -> str:
    """Strip legal suffixes and collapse whitespace: 'Acme, Inc.' -> 'Acme'."""
    result = " ".join(name.split())
    previous = None
    while previous != result:
        previous = result
        result = _COMPANY_SUFFIX_RE.sub("", result).strip()
    return result


def validate_company(
    name: str,
    *,
    website: str | None = None,
    location: str | None = None,
    industry: str | None = None,
) -> CompanyCheck:
    """Reject placeholder or generic employer names; score the rest."""
    cleaned = " ".join((name or "").split())
    if len(cleaned) < 2:
        return CompanyCheck(valid=False, issues=("company name too short",))
    if cleaned.lower() in INVALID_COMPANY_NAMES:
        return CompanyCheck(valid=False, issues=("placeholder company name",))
    if any(p.search(cleaned) for p in _GENERIC_COMPANY_PATTERNS):
        return CompanyCheck(valid=False, issues=("generic company name",))

    confidence = 70.0
    issues: list[str] = []
    if website:
        if sanitize_url(website) is None:
            issues.append("invalid website format")
        else:
            confidence += 10
    if location and location.strip():
        confidence += 10
    if industry and industry.strip():
        confidence += 10
    return CompanyCheck(valid=True, confidence=min(confidence, 100.0), issues=tuple(issues))
