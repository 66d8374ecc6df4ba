"""Sanitizer: neutralize markup, dangerous URLs and malformed numbers.

Never rejects a record. Every function is idempotent:
``f(f(x)) == f(x)``. Text substitutions run to a fixed point because
removing one tag can expose another (``<<b>script>``).
"""

import logging
import math
import re
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

from aggregator.core.schemas import ContactCandidate, JobCandidate

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 10_000
MAX_NUMBER = 1_000_000_000
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15

_TEXT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<[^>]+>"),
    re.compile(r"(?:javascript|vbscript)\s*:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]"),
)

_DANGEROUS_SCHEMES = re.compile(r"javascript:|data:|vbscript:", re.IGNORECASE)

# Characters left untouched when re-quoting; '%' keeps existing escapes intact.
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = "/?%:@!$&'()*+,;=-._~"


def sanitize_text(text: str | None) -> str:
    """Strip markup, script-like substrings and control characters; cap length."""
    if not text:
        return ""
    # Each pass only deletes characters, so this reaches a fixed point.
    result = text
    previous: str | None = None
    while result != previous:
        previous = result
        for pattern in _TEXT_PATTERNS:
            result = pattern.sub("", result)
    return result.strip()[:MAX_TEXT_LENGTH].rstrip()


def sanitize_optional_text(text: str | None) -> str | None:
    cleaned = sanitize_text(text)
    return cleaned or None


def sanitize_url(url: str | None) -> str | None:
    """Return a canonical absolute http(s) URL, or None if unsafe/invalid."""
    if not url:
        return None
    trimmed = url.strip()
    if not trimmed.lower().startswith(("http://", "https://")):
        return None
    if _DANGEROUS_SCHEMES.search(trimmed):
        return None
    try:
        parts = urlsplit(trimmed)
    except ValueError:
        return None
    if not parts.netloc or any(c.isspace() for c in parts.netloc):
        return None
    path = quote(parts.path or "/", safe=_PATH_SAFE)
    query = quote(parts.query, safe=_QUERY_SAFE)
    fragment = quote(parts.fragment, safe=_QUERY_SAFE)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, fragment))


def sanitize_phone(phone: str | None) -> str | None:
    """Keep digits and '+' only; None unless 10-15 characters remain."""
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone)
    if not PHONE_MIN_DIGITS <= len(cleaned) <= PHONE_MAX_DIGITS:
        return None
    return cleaned


def sanitize_number(value: Any) -> int | None:
    """Coerce to a non-negative int no larger than 1e9, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        cleaned = re.sub(r"[^\d.\-]", "", value)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    elif isinstance(value, int | float):
        number = float(value)
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    if number < 0 or number > MAX_NUMBER:
        return None
    return int(number)


def sanitize_email(email: str | None) -> str | None:
    if not email:
        return None
    cleaned = email.strip().lower()
    if cleaned.startswith("mailto:"):
        cleaned = cleaned[len("mailto:"):]
    return cleaned.split("?")[0] or None


def sanitize_job(job: JobCandidate) -> JobCandidate:
    """Return a copy of the job with every text and URL field sanitized."""
    return job.model_copy(update={
        "title": sanitize_text(job.title),
        "company": sanitize_text(job.company),
        "location": sanitize_text(job.location),
        "url": sanitize_url(job.url) or "",
        "description": sanitize_text(job.description),
        "salary": sanitize_optional_text(job.salary),
        "posted_at": sanitize_optional_text(job.posted_at),
    })


def sanitize_contact(contact: ContactCandidate) -> ContactCandidate:
    """Return a copy of the contact with text, URL, phone and number fields sanitized."""
    rating = contact.rating
    if rating is not None and (math.isnan(rating) or not 0.0 <= rating <= 5.0):
        rating = None
    return contact.model_copy(update={
        "name": sanitize_text(contact.name),
        "title": sanitize_text(contact.title),
        "email": sanitize_email(contact.email),
        "phone": sanitize_phone(contact.phone),
        "linkedin_url": sanitize_url(contact.linkedin_url),
        "department": sanitize_optional_text(contact.department),
        "company": sanitize_text(contact.company),
        "company_website": sanitize_url(contact.company_website),
        "industry": sanitize_optional_text(contact.industry),
        "employee_count": sanitize_number(contact.employee_count),
        "rating": rating,
    })


def sanitize_candidate(candidate: JobCandidate | ContactCandidate) -> JobCandidate | ContactCandidate:
    if isinstance(candidate, JobCandidate):
        return sanitize_job(candidate)
    return sanitize_contact(candidate)
