"""Headless-browser adapters for JS-rendered pages.

The browser only renders; extraction reuses the static parsers on the
rendered HTML. A session is opened per fetch and closed when the fetch
ends, including when it is cancelled at its timeout.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote_plus, urljoin

from patchright.async_api import Error as PlaywrightError

from aggregator.browser.actions import random_sleep, scroll_until_stable
from aggregator.browser.session import BrowserSession
from aggregator.core.config import BrowserConfig, BrowserScraperConfig, WebsiteContactsConfig
from aggregator.core.errors import RetryableSourceError
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

RENDERED_CONTACT_CONFIDENCE = 60.0

SessionFactory = Callable[[BrowserConfig], Any]


class BrowserJobAdapter(SourceAdapter):
    """Job board that needs a real browser to render its results."""

    def __init__(
        self,
        config: BrowserScraperConfig,
        browser: BrowserConfig,
        session_factory: SessionFactory = BrowserSession,
    ) -> None:
        self._config = config
        self._browser = browser
        self._session_factory = session_factory

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

        jobs: list[JobCandidate | ContactCandidate] = []
        deadline = time.monotonic() + timeout
        try:
            async with asyncio.timeout(timeout):
                async with self._session_factory(self._browser) as session:
                    for i, keyword in enumerate(query.keywords):
                        if i > 0:
                            await random_sleep(1.0, 3.0, deadline=deadline)
                        jobs.extend(await self._search_keyword(session.page, keyword, query.location, deadline))
        except TimeoutError:
            logger.warning(
                "%s timed out after %.1fs, keeping %d partial jobs",
                self.source_id, timeout, len(jobs),
            )
        except PlaywrightError as e:
            if not jobs:
                raise RetryableSourceError(self.source_id, f"browser error: {e}") from e
            logger.warning("%s browser error, keeping %d partial jobs: %s", self.source_id, len(jobs), e)

        logger.info("%s: %d raw jobs", self.source_id, len(jobs))
        return jobs

    async def _search_keyword(
        self,
        page: Any,
        keyword: str,
        location: str | None,
        deadline: float,
    ) -> list[JobCandidate]:
        url = self.build_url(keyword, location)
        logger.debug("%s navigating to %s", self.source_id, url)
        await page.goto(url)
        await scroll_until_stable(
            page,
            card_selectors=self._config.card_selectors,
            max_attempts=self._config.max_scrolls,
            deadline=deadline,
        )
        html = await page.content()
        return parse_job_page(html, self._config, url)


class BrowserContactAdapter(SourceAdapter):
    """Company website rendered in a browser; fallback for the static contact scraper."""

    def __init__(
        self,
        config: WebsiteContactsConfig,
        browser: BrowserConfig,
        session_factory: SessionFactory = BrowserSession,
    ) -> None:
        self._config = config
        self._browser = browser
        self._session_factory = session_factory

    @property
    def source_id(self) -> str:
        return self._config.id

    @property
    def tier(self) -> SourceTier:
        return SourceTier.SCRAPE

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        if not isinstance(query, ContactQuery) or not query.company_website:
            return []

        base = query.company_website.rstrip("/") + "/"
        contacts: list[JobCandidate | ContactCandidate] = []
        try:
            async with asyncio.timeout(timeout):
                async with self._session_factory(self._browser) as session:
                    for path in self._config.paths:
                        url = urljoin(base, path.lstrip("/"))
                        try:
                            await session.page.goto(url)
                            html = await session.page.content()
                        except PlaywrightError as e:
                            logger.debug("%s could not render %s: %s", self.source_id, url, e)
                            continue
                        contacts.extend(parse_contact_page(
                            html,
                            source_id=self.source_id,
                            company=query.company_name,
                            company_website=query.company_website,
                            confidence=RENDERED_CONTACT_CONFIDENCE,
                        ))
        except TimeoutError:
            logger.warning(
                "%s timed out after %.1fs, keeping %d partial contacts",
                self.source_id, timeout, len(contacts),
            )
        except PlaywrightError as e:
            raise RetryableSourceError(self.source_id, f"browser error: {e}") from e

        logger.info("%s: %d raw contacts (rendered)", self.source_id, len(contacts))
        return contacts
