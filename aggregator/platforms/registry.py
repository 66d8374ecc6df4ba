"""Build adapters and the orchestrator from Settings."""

import logging
import sqlite3

import httpx

from aggregator.core.config import (
    AIFallbackConfig,
    BrowserConfig,
    BrowserScraperConfig,
    ContactApiConfig,
    Settings,
    SourceConfig,
    StaticScraperConfig,
    StoreSourceConfig,
    WebsiteContactsConfig,
)
from aggregator.core.schemas import RecordKind, SourceTier
from aggregator.pipeline.cache import MemoryCache, SqliteCache, TieredCache
from aggregator.pipeline.orchestrator import Orchestrator, SourcePlan
from aggregator.pipeline.rate_limiter import RateLimiterRegistry
from aggregator.platforms.ai_fallback import AIFallbackAdapter
from aggregator.platforms.base import SourceAdapter
from aggregator.platforms.contacts_api import ContactApiAdapter
from aggregator.platforms.headless.adapter import BrowserContactAdapter, BrowserJobAdapter
from aggregator.platforms.store import StoreAdapter
from aggregator.platforms.strategy import PreferredThenFallbackAdapter
from aggregator.platforms.web.adapter import StaticJobAdapter, WebsiteContactAdapter

logger = logging.getLogger(__name__)


def _as_browser_config(config: StaticScraperConfig) -> BrowserScraperConfig:
    """Same board and selectors, rendered in a browser."""
    return BrowserScraperConfig(
        **config.model_dump(exclude={"kind", "browser_fallback", "raw_confidence"}),
        raw_confidence=max(config.raw_confidence - 5, 0),
    )


def build_adapter(
    source: SourceConfig,
    conn: sqlite3.Connection,
    browser: BrowserConfig,
    http_client: httpx.AsyncClient | None = None,
) -> SourceAdapter:
    """Instantiate the adapter for one source config."""
    if isinstance(source, StoreSourceConfig):
        return StoreAdapter(source.id, conn, limit=source.limit, raw_confidence=source.raw_confidence)
    if isinstance(source, StaticScraperConfig):
        static = StaticJobAdapter(source, http_client)
        if not source.browser_fallback:
            return static
        return PreferredThenFallbackAdapter(
            source.id, static, BrowserJobAdapter(_as_browser_config(source), browser),
        )
    if isinstance(source, BrowserScraperConfig):
        return BrowserJobAdapter(source, browser)
    if isinstance(source, WebsiteContactsConfig):
        website = WebsiteContactAdapter(source, http_client)
        if not source.browser_fallback:
            return website
        return PreferredThenFallbackAdapter(
            source.id, website, BrowserContactAdapter(source, browser),
        )
    if isinstance(source, ContactApiConfig):
        return ContactApiAdapter(source, http_client)
    if isinstance(source, AIFallbackConfig):
        return AIFallbackAdapter(source)
    msg = f"Unsupported source kind: {source.kind}"
    raise ValueError(msg)


def build_plan(adapters: list[SourceAdapter]) -> SourcePlan:
    """Group adapters by tier, keeping config order within a tier."""
    plan = SourcePlan()
    for adapter in adapters:
        if adapter.tier is SourceTier.STORE:
            plan.store.append(adapter)
        elif adapter.tier is SourceTier.AI_FALLBACK:
            plan.ai.append(adapter)
        else:
            plan.scrapers.append(adapter)
    return plan


def build_orchestrator(
    settings: Settings,
    conn: sqlite3.Connection,
    http_client: httpx.AsyncClient | None = None,
) -> Orchestrator:
    """Wire caches, rate limiters and adapters for every configured source.

    Without ``http_client`` each HTTP adapter opens its own client on first use.
    """
    plans = {
        RecordKind.JOB: build_plan([
            build_adapter(s, conn, settings.browser, http_client) for s in settings.job_sources
        ]),
        RecordKind.CONTACT: build_plan([
            build_adapter(s, conn, settings.browser, http_client) for s in settings.contact_sources
        ]),
    }
    cache = TieredCache(
        MemoryCache(
            max_entries=settings.cache.memory_max_entries,
            sweep_interval=settings.cache.sweep_interval_seconds,
        ),
        SqliteCache(conn),
    )
    limits = {
        s.id: s.rate_limit
        for s in [*settings.job_sources, *settings.contact_sources]
        if s.rate_limit is not None
    }
    for kind, plan in plans.items():
        logger.info(
            "%s sources: store=%d scrapers=%d ai=%d",
            kind.value, len(plan.store), len(plan.scrapers), len(plan.ai),
        )
    return Orchestrator(
        plans,
        cache,
        config=settings.orchestrator,
        cache_config=settings.cache,
        rate_limits=RateLimiterRegistry(limits, conn),
        conn=conn,
    )
