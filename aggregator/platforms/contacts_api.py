"""JSON contact-discovery API adapter (RapidAPI-style key and host headers)."""

import logging
import os
import re
from typing import Any

import httpx

from aggregator.core.config import ContactApiConfig
from aggregator.core.errors import (
    RateLimitExceededError,
    RetryableSourceError,
    TerminalSourceError,
)
from aggregator.core.schemas import ContactCandidate, ContactQuery, JobCandidate, Query, SourceTier
from aggregator.platforms.base import SourceAdapter

logger = logging.getLogger(__name__)

HIRING_TERMS = ("recruiter", "talent", "hr", "hiring", "human resources", "people")

# Response field aliases, first match wins.
_NAME_KEYS = ("name", "full_name", "fullName")
_TITLE_KEYS = ("title", "job_title", "jobTitle", "position")
_EMAIL_KEYS = ("email", "email_address", "work_email")
_PHONE_KEYS = ("phone", "phone_number", "phoneNumber")
_LINKEDIN_KEYS = ("linkedin_url", "linkedin", "linkedinUrl", "linkedin_profile")
_LIST_KEYS = ("contacts", "data", "results", "people")


def _pick(item: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_items(payload: Any) -> list[dict[str, Any]]:
    """Find the list of contact objects in an API payload."""
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if isinstance(payload, dict):
        for key in _LIST_KEYS:
            if key in payload:
                return extract_items(payload[key])
    return []


def is_relevant(title: str, hint: str | None) -> bool:
    """Keep everyone without a hint; with one, match the hint or a hiring term."""
    if not hint:
        return True
    lowered = title.lower()
    if hint.lower() in lowered:
        return True
    words = set(re.findall(r"[a-z]+", lowered))
    return any(term in words if " " not in term else term in lowered for term in HIRING_TERMS)


class ContactApiAdapter(SourceAdapter):
    """Queries a contact API by company name and website domain."""

    def __init__(
        self,
        config: ContactApiConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client

    @property
    def source_id(self) -> str:
        return self._config.id

    @property
    def tier(self) -> SourceTier:
        return SourceTier.SCRAPE

    def _headers(self) -> dict[str, str]:
        api_key = os.environ.get(self._config.api_key_env)
        if not api_key:
            msg = f"{self._config.api_key_env} environment variable is required"
            raise TerminalSourceError(self.source_id, msg)
        headers = {"X-RapidAPI-Key": api_key, "Accept": "application/json"}
        if self._config.host_header:
            headers["X-RapidAPI-Host"] = self._config.host_header
        return headers

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        if not isinstance(query, ContactQuery):
            return []

        params = {"company": query.company_name}
        if query.company_website:
            params["domain"] = query.company_website
        if query.target_title_hint:
            params["title"] = query.target_title_hint

        client = self._client or httpx.AsyncClient()
        try:
            response = await client.get(
                self._config.endpoint, params=params, headers=self._headers(), timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise RetryableSourceError(self.source_id, "contact API timed out") from e
        except httpx.TransportError as e:
            raise RetryableSourceError(self.source_id, f"contact API unreachable: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code == 429:
            raise RateLimitExceededError(self.source_id, "upstream")
        if response.status_code >= 500:
            raise RetryableSourceError(self.source_id, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise TerminalSourceError(self.source_id, f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise RetryableSourceError(self.source_id, "contact API returned invalid JSON") from e

        contacts: list[JobCandidate | ContactCandidate] = []
        for item in extract_items(payload):
            name = _pick(item, _NAME_KEYS)
            if not name:
                continue
            title = _pick(item, _TITLE_KEYS) or ""
            if not is_relevant(title, query.target_title_hint):
                continue
            contacts.append(ContactCandidate(
                source_id=self.source_id,
                raw_confidence=self._config.raw_confidence,
                name=name,
                title=title,
                email=_pick(item, _EMAIL_KEYS),
                phone=_pick(item, _PHONE_KEYS),
                linkedin_url=_pick(item, _LINKEDIN_KEYS),
                department=_pick(item, ("department",)),
                company=query.company_name,
                company_website=query.company_website,
            ))

        logger.info("%s: %d contacts for '%s'", self.source_id, len(contacts), query.company_name)
        return contacts
