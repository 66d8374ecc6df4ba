"""Configuration models and YAML loader for the aggregation core."""

from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

_DAY = 24 * 60 * 60


class DatabaseConfig(BaseModel):
    """SQLite file backing the structured store, durable cache, quotas and run log."""

    path: str = "data/aggregator.db"


class CacheConfig(BaseModel):
    """TTL per query class plus fast-tier sizing."""

    job_ttl_seconds: int = Field(default=21 * _DAY, ge=0)
    contact_ttl_seconds: int = Field(default=7 * _DAY, ge=0)
    memory_max_entries: int = Field(default=1024, ge=1)
    sweep_interval_seconds: float = Field(default=300.0, ge=0.0)


class OrchestratorConfig(BaseModel):
    """Tier thresholds and timeout budgets."""

    min_acceptable: int = Field(default=10, ge=1)
    max_results: int = Field(default=25, ge=1)
    tier_timeout_seconds: float = Field(default=30.0, gt=0.0)
    adapter_timeout_seconds: float = Field(default=15.0, gt=0.0)
    scraper_keyword_limit: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def adapter_within_tier(self) -> "OrchestratorConfig":
        if self.adapter_timeout_seconds > self.tier_timeout_seconds:
            msg = "adapter_timeout_seconds must not exceed tier_timeout_seconds"
            raise ValueError(msg)
        return self


class RateLimitConfig(BaseModel):
    """Outbound request limits for a single source."""

    requests_per_minute: int = Field(default=30, ge=1)
    daily_limit: int | None = Field(default=None, ge=1)
    max_wait_seconds: float = Field(default=5.0, ge=0.0)
    cooldown_seconds: float = Field(default=60.0, ge=0.0)


class BrowserConfig(BaseModel):
    """Headless browser session configuration."""

    cookies_path: str | None = None
    headless: bool = True
    timeout_ms: int = Field(default=30000, ge=1000)
    block_resources: bool = True


# --- Source configs (one variant per adapter kind) ---


class _SourceBase(BaseModel):
    id: str
    rate_limit: RateLimitConfig | None = None

    @field_validator("id")
    @classmethod
    def id_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "source id must not be empty"
            raise ValueError(msg)
        return v.strip()


class StoreSourceConfig(_SourceBase):
    """Indexed structured store (the SQLite jobs/contacts tables)."""

    kind: Literal["store"] = "store"
    limit: int = Field(default=100, ge=1)
    raw_confidence: float = Field(default=90.0, ge=0.0, le=100.0)


class _CardSelectors(BaseModel):
    card_selectors: tuple[str, ...] = ("article.job", ".job-listing", ".job-result")
    title_selectors: tuple[str, ...] = (".job-title", "h2", "h3")
    company_selectors: tuple[str, ...] = (".company-name", ".employer", ".company")
    location_selectors: tuple[str, ...] = (".job-location", ".location")
    description_selectors: tuple[str, ...] = (".job-description", ".description", ".summary")
    link_selectors: tuple[str, ...] = ("a.job-link", "a[href]")
    salary_selectors: tuple[str, ...] = (".salary",)
    posted_selectors: tuple[str, ...] = ("time", ".posted", ".date")


class StaticScraperConfig(_SourceBase, _CardSelectors):
    """Static HTML job board scraped with httpx + BeautifulSoup.

    ``search_url`` is a template with ``{keywords}`` and ``{location}``
    placeholders (both URL-encoded before substitution).
    """

    kind: Literal["static"] = "static"
    search_url: str
    raw_confidence: float = Field(default=60.0, ge=0.0, le=100.0)
    browser_fallback: bool = False


class BrowserScraperConfig(_SourceBase, _CardSelectors):
    """JS-rendered job board scraped with a headless patchright browser."""

    kind: Literal["browser"] = "browser"
    search_url: str
    max_scrolls: int = Field(default=5, ge=1, le=20)
    raw_confidence: float = Field(default=55.0, ge=0.0, le=100.0)


class WebsiteContactsConfig(_SourceBase):
    """Contact discovery on a company's own website."""

    kind: Literal["website-contacts"] = "website-contacts"
    paths: tuple[str, ...] = ("", "/about", "/team", "/contact", "/about-us", "/leadership")
    browser_fallback: bool = True
    raw_confidence: float = Field(default=70.0, ge=0.0, le=100.0)


class ContactApiConfig(_SourceBase):
    """JSON contact-discovery API (RapidAPI style key + host headers)."""

    kind: Literal["contact-api"] = "contact-api"
    endpoint: str
    api_key_env: str = "RAPIDAPI_KEY"
    host_header: str | None = None
    raw_confidence: float = Field(default=85.0, ge=0.0, le=100.0)


class AIFallbackConfig(_SourceBase):
    """Paid LLM inference used as the last-resort tier."""

    kind: Literal["ai-fallback"] = "ai-fallback"
    provider: str = "perplexity"
    model: str | None = None
    raw_confidence: float = Field(default=40.0, ge=0.0, le=100.0)


SourceConfig = Annotated[
    StoreSourceConfig
    | StaticScraperConfig
    | BrowserScraperConfig
    | WebsiteContactsConfig
    | ContactApiConfig
    | AIFallbackConfig,
    Field(discriminator="kind"),
]

_JOB_KINDS = frozenset({"store", "static", "browser", "ai-fallback"})
_CONTACT_KINDS = frozenset({"store", "website-contacts", "contact-api", "ai-fallback"})


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    job_sources: list[SourceConfig] = Field(default_factory=list)
    contact_sources: list[SourceConfig] = Field(default_factory=list)

    @field_validator("job_sources")
    @classmethod
    def job_source_kinds(cls, v: list[Any]) -> list[Any]:
        for source in v:
            if source.kind not in _JOB_KINDS:
                msg = f"source '{source.id}' of kind '{source.kind}' cannot serve job queries"
                raise ValueError(msg)
        return v

    @field_validator("contact_sources")
    @classmethod
    def contact_source_kinds(cls, v: list[Any]) -> list[Any]:
        for source in v:
            if source.kind not in _CONTACT_KINDS:
                msg = f"source '{source.id}' of kind '{source.kind}' cannot serve contact queries"
                raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def unique_source_ids(self) -> "Settings":
        seen: set[str] = set()
        for source in [*self.job_sources, *self.contact_sources]:
            if source.id in seen:
                msg = f"duplicate source id '{source.id}'"
                raise ValueError(msg)
            seen.add(source.id)
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
