"""Static HTML adapters built on httpx + BeautifulSoup.

``StaticJobAdapter`` fetches one search-results page per keyword.
``WebsiteContactAdapter`` walks a handful of well-known pages on the
company's own site. Both fan out their page requests concurrently and
return whatever finished inside the timeout budget.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar
from urllib.parse import quote_plus, urljoin

import httpx

from aggregator.core.config import StaticScraperConfig, WebsiteContactsConfig
from aggregator.core.errors import (
    RateLimitExceededError,
    RetryableSourceError,
    TerminalSourceError,
)
from aggregator.core.schemas import (
    ContactCandidate,
    ContactQuery,
    JobCandidate,
    JobQuery,
    Query,
    SourceTier,
)
from aggregator.platforms.base import SourceAdapter
from aggregator.platforms.web.parser import parse_contact_page, parse_job_page

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
}

_BLOCKED_MARKERS = ("captcha", "access denied", "unusual traffic")


async def fetch_html(
    client: httpx.AsyncClient,
    url: str,
    source_id: str,
    timeout: float,
) -> str:
    """GET a page and map transport and HTTP failures onto the source error taxonomy."""
    try:
        response = await client.get(url, timeout=timeout, follow_redirects=True)
    except httpx.TimeoutException as e:
        raise RetryableSourceError(source_id, f"timed out fetching {url}") from e
    except httpx.TransportError as e:
        raise RetryableSourceError(source_id, f"transport error for {url}: {e}") from e

    status = response.status_code
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        seconds = float(retry_after) if retry_after and retry_after.isdigit() else None
        raise RateLimitExceededError(source_id, "upstream", seconds)
    if status in (401, 403, 404, 410):
        raise TerminalSourceError(source_id, f"HTTP {status} for {url}")
    if status >= 500:
        raise RetryableSourceError(source_id, f"HTTP {status} for {url}")
    if status >= 400:
        raise TerminalSourceError(source_id, f"HTTP {status} for {url}")

    text = response.text
    head = text[:2000].lower()
    if any(marker in head for marker in _BLOCKED_MARKERS):
        raise RetryableSourceError(source_id, f"blocked page at {url}")
    return text


async def gather_within(
    source_id: str,
    calls: Sequence[Callable[[], Awaitable[list[T]]]],
    timeout: float,
) -> list[T]:
    """Run page fetches concurrently and merge whatever succeeded in time.

    Raises the first error only when every call failed; a rate-limit error
    from any call always propagates so the orchestrator can cool the source.
    """
    tasks = [asyncio.create_task(call()) for call in calls]
    if not tasks:
        return []
    done, pending = await asyncio.wait(tasks, timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.debug("%s: %d page fetches cancelled at timeout", source_id, len(pending))

    results: list[T] = []
    errors: list[BaseException] = []
    for task in tasks:
        if task not in done:
            continue
        exc = task.exception()
        if exc is None:
            results.extend(task.result())
        elif isinstance(exc, RateLimitExceededError):
            raise exc
        else:
            errors.append(exc)
            logger.debug("%s: page fetch failed: %s", source_id, exc)

    if not results and errors and len(errors) == len(tasks):
        raise errors[0]
    if not results and pending and len(pending) == len(tasks):
        raise RetryableSourceError(source_id, "every page fetch timed out")
    return results


class _HttpAdapter(SourceAdapter):
    """Owns or borrows an httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=DEFAULT_HEADERS)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class StaticJobAdapter(_HttpAdapter):
    """Job board whose search results are plain server-rendered HTML."""

    def __init__(
        self,
        config: StaticScraperConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client)
        self._config = config

    @property
    def source_id(self) -> str:
        return self._config.id

    @property
    def tier(self) -> SourceTier:
        return SourceTier.SCRAPE

    def build_url(self, keyword: str, location: str | None) -> str:
        return self._config.search_url.format(
            keywords=quote_plus(keyword),
            location=quote_plus(location or ""),
        )

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        if not isinstance(query, JobQuery):
            return []
        client = self._get_client()

        def page_call(keyword: str) -> Callable[[], Awaitable[list[JobCandidate]]]:
            async def call() -> list[JobCandidate]:
                url = self.build_url(keyword, query.location)
                html = await fetch_html(client, url, self.source_id, timeout)
                return parse_job_page(html, self._config, url)
            return call

        jobs = await gather_within(self.source_id, [page_call(k) for k in query.keywords], timeout)
        logger.info("%s: %d raw jobs for %s", self.source_id, len(jobs), list(query.keywords))
        return list(jobs)


class WebsiteContactAdapter(_HttpAdapter):
    """Contact discovery on the company's website: home, about, team, contact pages."""

    def __init__(
        self,
        config: WebsiteContactsConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client)
        self._config = config

    @property
    def source_id(self) -> str:
        return self._config.id

    @property
    def tier(self) -> SourceTier:
        return SourceTier.SCRAPE

    def page_urls(self, website: str) -> list[str]:
        base = website if website.endswith("/") else website + "/"
        return [urljoin(base, path.lstrip("/")) for path in self._config.paths]

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        if not isinstance(query, ContactQuery):
            return []
        if not query.company_website:
            logger.debug("%s: no company website for '%s'", self.source_id, query.company_name)
            return []
        client = self._get_client()

        def page_call(url: str) -> Callable[[], Awaitable[list[ContactCandidate]]]:
            async def call() -> list[ContactCandidate]:
                html = await fetch_html(client, url, self.source_id, timeout)
                return parse_contact_page(
                    html,
                    source_id=self.source_id,
                    company=query.company_name,
                    company_website=query.company_website,
                )
            return call

        calls = [page_call(url) for url in self.page_urls(query.company_website)]
        try:
            contacts = await gather_within(self.source_id, calls, timeout)
        except TerminalSourceError as e:
            # Every path 404ing still leaves the browser fallback to try.
            raise RetryableSourceError(self.source_id, str(e)) from e
        logger.info("%s: %d raw contacts for '%s'", self.source_id, len(contacts), query.company_name)
        return list(contacts)

