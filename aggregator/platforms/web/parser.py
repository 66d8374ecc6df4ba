"""Static HTML parsers: job result pages and company contact pages.

Job pages: Schema.org ``JobPosting`` JSON-LD blocks are read first; CSS
card selectors are used only when the page carries no JSON-LD postings.
Each selector is a fallback tuple, tried in order until one matches.

Contact pages: ``mailto:`` links and team-member blocks (name + title).
"""

import json
import logging
import re
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from aggregator.core.config import BrowserScraperConfig, StaticScraperConfig
from aggregator.core.schemas import ContactCandidate, JobCandidate
from aggregator.pipeline.validator import extract_emails, name_from_email, validate_email

logger = logging.getLogger(__name__)

MAILTO_CONFIDENCE = 70.0
TEAM_MEMBER_CONFIDENCE = 75.0

TEAM_MEMBER_SELECTORS: tuple[str, ...] = (
    ".team-member",
    ".staff-member",
    ".person",
    ".leadership-member",
    "[itemtype*='schema.org/Person']",
)
MEMBER_NAME_SELECTORS: tuple[str, ...] = (".name", "[itemprop='name']", "h3", "h4", "strong")
MEMBER_TITLE_SELECTORS: tuple[str, ...] = (
    ".title", ".role", ".position", "[itemprop='jobTitle']", "p",
)

_TAG_RE = re.compile(r"<[^>]+>")

# Link labels that say nothing about who the address belongs to.
_GENERIC_LINK_LABELS = frozenset({
    "email", "e-mail", "mail", "email me", "send email", "contact", "contact us", "write to us",
})

ScraperConfig = StaticScraperConfig | BrowserScraperConfig


def _first(node: Tag, selectors: tuple[str, ...]) -> Tag | None:
    for selector in selectors:
        found = node.select_one(selector)
        if found is not None:
            return found
    return None


def _text(node: Tag, selectors: tuple[str, ...]) -> str:
    found = _first(node, selectors)
    if found is None:
        return ""
    return " ".join(found.get_text(" ", strip=True).split())


# ---------------------------------------------------------------------------
# JSON-LD
# ---------------------------------------------------------------------------


def _is_job_posting(item: dict[str, Any]) -> bool:
    item_type = item.get("@type", "")
    if isinstance(item_type, list):
        return any("JobPosting" in str(t) for t in item_type)
    return "JobPosting" in str(item_type)


def _flatten_jsonld(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for d in data for item in _flatten_jsonld(d)]
    if not isinstance(data, dict):
        return []
    if "@graph" in data and isinstance(data["@graph"], list):
        return _flatten_jsonld(data["@graph"])
    if "itemListElement" in data and isinstance(data["itemListElement"], list):
        return [
            e["item"] for e in data["itemListElement"]
            if isinstance(e, dict) and isinstance(e.get("item"), dict)
        ]
    return [data]


def _jsonld_location(raw: Any) -> str:
    if isinstance(raw, list):
        return "; ".join(filter(None, (_jsonld_location(r) for r in raw)))
    if isinstance(raw, str):
        return raw
    if not isinstance(raw, dict):
        return ""
    address = raw.get("address")
    if isinstance(address, dict):
        parts = [
            address.get("addressLocality"),
            address.get("addressRegion"),
            address.get("addressCountry"),
        ]
        return ", ".join(str(p) for p in parts if isinstance(p, str) and p)
    if isinstance(address, str):
        return address
    return str(raw.get("name") or "")


def _jsonld_salary(raw: Any) -> str | None:
    if isinstance(raw, str | int | float):
        return str(raw)
    if not isinstance(raw, dict):
        return None
    currency = raw.get("currency", "")
    value = raw.get("value")
    if isinstance(value, dict):
        low, high = value.get("minValue"), value.get("maxValue")
        amount = f"{low}-{high}" if low and high else str(value.get("value") or low or high or "")
        unit = value.get("unitText", "")
        text = " ".join(p for p in (currency, amount, unit) if p)
        return text or None
    if value is not None:
        return " ".join(p for p in (currency, str(value)) if p)
    return None


def _jsonld_job(item: dict[str, Any], page_url: str, source_id: str, raw_confidence: float) -> JobCandidate:
    org = item.get("hiringOrganization")
    company = org.get("name") if isinstance(org, dict) else org
    description = _TAG_RE.sub(" ", str(item.get("description") or ""))
    url = item.get("url") or page_url
    return JobCandidate(
        source_id=source_id,
        raw_confidence=raw_confidence,
        title=str(item.get("title") or "").strip(),
        company=str(company or "").strip(),
        location=_jsonld_location(item.get("jobLocation")),
        url=urljoin(page_url, str(url)),
        description=" ".join(description.split()),
        salary=_jsonld_salary(item.get("baseSalary")),
        posted_at=str(item["datePosted"])[:10] if item.get("datePosted") else None,
    )


def parse_jsonld_jobs(
    soup: BeautifulSoup,
    page_url: str,
    source_id: str,
    raw_confidence: float,
) -> list[JobCandidate]:
    """Return every JobPosting described in the page's JSON-LD blocks."""
    jobs: list[JobCandidate] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError as e:
            logger.debug("Skipping unparseable JSON-LD block: %s", e)
            continue
        for item in _flatten_jsonld(data):
            if not _is_job_posting(item):
                continue
            try:
                jobs.append(_jsonld_job(item, page_url, source_id, raw_confidence))
            except (TypeError, ValueError) as e:
                logger.debug("Skipping malformed JobPosting on %s: %s", page_url, e)
    return jobs


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


def parse_card(card: Tag, config: ScraperConfig, page_url: str) -> JobCandidate | None:
    """Parse a single card. Returns None if it carries no link."""
    link = _first(card, config.link_selectors)
    href = link.get("href") if link is not None else None
    if not href or not isinstance(href, str):
        return None
    return JobCandidate(
        source_id=config.id,
        raw_confidence=config.raw_confidence,
        title=_text(card, config.title_selectors),
        company=_text(card, config.company_selectors),
        location=_text(card, config.location_selectors),
        url=urljoin(page_url, href),
        description=_text(card, config.description_selectors),
        salary=_text(card, config.salary_selectors) or None,
        posted_at=_posted(card, config.posted_selectors),
    )


def _posted(card: Tag, selectors: tuple[str, ...]) -> str | None:
    node = _first(card, selectors)
    if node is None:
        return None
    stamp = node.get("datetime")
    if isinstance(stamp, str) and stamp.strip():
        return stamp.strip()
    return node.get_text(strip=True) or None


def parse_job_page(html: str, config: ScraperConfig, page_url: str) -> list[JobCandidate]:
    """Parse a search-results page into raw job candidates."""
    soup = BeautifulSoup(html, "html.parser")
    jobs = parse_jsonld_jobs(soup, page_url, config.id, config.raw_confidence)
    if jobs:
        logger.debug("%s: %d jobs from JSON-LD", config.id, len(jobs))
        return jobs

    cards: list[Tag] = []
    for selector in config.card_selectors:
        cards = soup.select(selector)
        if cards:
            break

    for card in cards:
        candidate = parse_card(card, config, page_url)
        if candidate is not None:
            jobs.append(candidate)
    logger.debug("%s: %d jobs from %d cards", config.id, len(jobs), len(cards))
    return jobs


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def parse_contact_page(
    html: str,
    *,
    source_id: str,
    company: str,
    company_website: str | None,
    confidence: float | None = None,
) -> list[ContactCandidate]:
    """Pull contacts from ``mailto:`` links and team-member blocks.

    ``confidence`` overrides the per-pattern raw confidence (rendered pages
    parsed after a browser fallback are trusted less).
    """
    member_confidence = TEAM_MEMBER_CONFIDENCE if confidence is None else confidence
    mailto_confidence = MAILTO_CONFIDENCE if confidence is None else confidence
    soup = BeautifulSoup(html, "html.parser")
    contacts: list[ContactCandidate] = []
    seen_emails: set[str] = set()

    for block in _team_blocks(soup):
        name = _text(block, MEMBER_NAME_SELECTORS)
        if not name:
            continue
        title = _text(block, MEMBER_TITLE_SELECTORS)
        if title == name:
            title = ""
        emails = extract_emails(_block_email_text(block))
        seen_emails.update(emails[:1])
        linkedin = block.select_one("a[href*='linkedin.com/in/']")
        contacts.append(ContactCandidate(
            source_id=source_id,
            raw_confidence=member_confidence,
            name=name,
            title=title,
            email=emails[0] if emails else None,
            linkedin_url=str(linkedin["href"]) if linkedin is not None else None,
            company=company,
            company_website=company_website,
        ))

    for anchor in soup.select("a[href^='mailto:']"):
        email_check = validate_email(str(anchor["href"]).split("?")[0])
        if not email_check.valid or email_check.kind != "personal":
            continue
        if email_check.email in seen_emails:
            continue
        seen_emails.add(email_check.email)
        name = anchor.get_text(strip=True)
        if not name or "@" in name or name.lower() in _GENERIC_LINK_LABELS:
            name = name_from_email(email_check.email)
        contacts.append(ContactCandidate(
            source_id=source_id,
            raw_confidence=mailto_confidence,
            name=name,
            email=email_check.email,
            company=company,
            company_website=company_website,
        ))

    return contacts


def _team_blocks(soup: BeautifulSoup) -> list[Tag]:
    for selector in TEAM_MEMBER_SELECTORS:
        blocks = soup.select(selector)
        if blocks:
            return blocks
    return []


def _block_email_text(block: Tag) -> str:
    hrefs = [str(a["href"]) for a in block.select("a[href^='mailto:']")]
    return " ".join([*(h[len("mailto:"):] for h in hrefs), block.get_text(" ")])
