"""AI-fallback adapter: ask a search-grounded LLM for records.

Last resort. The orchestrator only reaches this tier when cache, store and
scrapers together produced too few records. Provider SDKs are synchronous,
so the call runs in a worker thread. A worker thread cannot be cancelled, so
the timeout budget is also handed to the SDK client: its HTTP request is
abandoned at the same deadline instead of running on after ``wait_for`` gives up.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from aggregator.core.config import AIFallbackConfig
from aggregator.core.errors import RetryableSourceError, TerminalSourceError
from aggregator.core.schemas import (
    ContactCandidate,
    ContactQuery,
    JobCandidate,
    JobQuery,
    Query,
    SourceTier,
)
from aggregator.llm import LLMProvider, get_provider, parse_json_payload
from aggregator.platforms.base import SourceAdapter

logger = logging.getLogger(__name__)

_JOB_FIELDS = ("title", "company", "location", "url", "description", "salary", "posted_at")
_CONTACT_FIELDS = ("name", "title", "email", "phone", "linkedin_url", "department")


def build_job_prompt(query: JobQuery) -> str:
    where = query.location or "any location"
    lines = [
        f"Find up to {query.max_results} job postings that are open right now.",
        f"Keywords: {', '.join(query.keywords)}",
        f"Location: {where}",
    ]
    if query.work_type.value != "any":
        lines.append(f"Work type: {query.work_type.value}")
    lines.append(
        "Return a JSON array of objects with keys "
        + ", ".join(_JOB_FIELDS)
        + ". 'url' must be the posting's own page, not a search page. "
        "'description' must be at least two sentences."
    )
    return "\n".join(lines)


def build_contact_prompt(query: ContactQuery) -> str:
    lines = [f"Find people who work at the company '{query.company_name}'."]
    if query.company_website:
        lines.append(f"Company website: {query.company_website}")
    if query.linkedin_company_url:
        lines.append(f"Company LinkedIn page: {query.linkedin_company_url}")
    if query.target_title_hint:
        lines.append(f"Prefer people whose role relates to: {query.target_title_hint}")
    lines.append(
        f"Return up to {query.max_results} entries as a JSON array of objects with keys "
        + ", ".join(_CONTACT_FIELDS)
        + ". Use null for anything you cannot verify."
    )
    return "\n".join(lines)


def _items(payload: Any, key: str) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get(key, [])
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def _str(item: dict[str, Any], key: str) -> str | None:
    value = item.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class AIFallbackAdapter(SourceAdapter):
    """Paid LLM inference wrapped in the source adapter contract."""

    def __init__(
        self,
        config: AIFallbackConfig,
        provider_factory: Callable[[str], LLMProvider] = get_provider,
    ) -> None:
        self._config = config
        self._provider_factory = provider_factory
        self._provider: LLMProvider | None = None

    @property
    def source_id(self) -> str:
        return self._config.id

    @property
    def tier(self) -> SourceTier:
        return SourceTier.AI_FALLBACK

    def _get_provider(self) -> LLMProvider:
        if self._provider is None:
            try:
                self._provider = self._provider_factory(self._config.provider)
            except (ValueError, ImportError) as e:
                raise TerminalSourceError(self.source_id, str(e)) from e
        return self._provider

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        provider = self._get_provider()
        if isinstance(query, JobQuery):
            prompt = build_job_prompt(query)
        else:
            prompt = build_contact_prompt(query)

        logger.warning("%s: invoking AI fallback via %s", self.source_id, provider.provider_id)
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(provider.complete, prompt, self._config.model, timeout=timeout),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise RetryableSourceError(self.source_id, f"no answer within {timeout:.1f}s") from e
        except (ValueError, ImportError) as e:
            # Missing API key or SDK.
            raise TerminalSourceError(self.source_id, str(e)) from e
        except Exception as e:
            raise RetryableSourceError(self.source_id, f"provider call failed: {e}") from e

        try:
            payload = parse_json_payload(raw)
        except ValueError as e:
            raise RetryableSourceError(self.source_id, str(e)) from e

        if isinstance(query, JobQuery):
            records: list[JobCandidate | ContactCandidate] = list(self._jobs(payload))
        else:
            records = list(self._contacts(payload, query))
        logger.info("%s: %d records from AI fallback", self.source_id, len(records))
        return records

    def _jobs(self, payload: Any) -> list[JobCandidate]:
        jobs = []
        for item in _items(payload, "jobs"):
            jobs.append(JobCandidate(
                source_id=self.source_id,
                raw_confidence=self._config.raw_confidence,
                title=_str(item, "title") or "",
                company=_str(item, "company") or "",
                location=_str(item, "location") or "",
                url=_str(item, "url") or "",
                description=_str(item, "description") or "",
                salary=_str(item, "salary"),
                posted_at=_str(item, "posted_at"),
            ))
        return jobs

    def _contacts(self, payload: Any, query: ContactQuery) -> list[ContactCandidate]:
        contacts = []
        for item in _items(payload, "contacts"):
            contacts.append(ContactCandidate(
                source_id=self.source_id,
                raw_confidence=self._config.raw_confidence,
                name=_str(item, "name") or "",
                title=_str(item, "title") or "",
                email=_str(item, "email"),
                phone=_str(item, "phone"),
                linkedin_url=_str(item, "linkedin_url"),
                department=_str(item, "department"),
                company=query.company_name,
                company_website=query.company_website,
            ))
        return contacts
