"""Tests for the httpx-based static adapters and their error mapping."""

import asyncio
from collections.abc import Callable

import httpx
import pytest

from aggregator.core.config import StaticScraperConfig, WebsiteContactsConfig
from aggregator.core.errors import RateLimitExceededError, RetryableSourceError, TerminalSourceError
from aggregator.core.schemas import ContactQuery, JobQuery
from aggregator.platforms.web.adapter import (
    StaticJobAdapter,
    WebsiteContactAdapter,
    fetch_html,
    gather_within,
)

CARD = """
<article class="job">
  <h2 class="job-title">{title}</h2>
  <span class="company-name">General Hospital</span>
  <a class="job-link" href="/jobs/view/{slug}">View</a>
</article>
"""


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _static_config() -> StaticScraperConfig:
    return StaticScraperConfig(id="board", search_url="https://board.org/search?q={keywords}&l={location}")


# ---------------------------------------------------------------------------
# fetch_html
# ---------------------------------------------------------------------------


class TestFetchHtml:
    async def test_ok(self) -> None:
        async with _client(lambda r: httpx.Response(200, text="<html>hi</html>")) as client:
            assert await fetch_html(client, "https://x.org/", "s", 5) == "<html>hi</html>"

    async def test_429_with_retry_after(self) -> None:
        response = httpx.Response(429, headers={"Retry-After": "12"})
        async with _client(lambda r: response) as client:
            with pytest.raises(RateLimitExceededError) as exc_info:
                await fetch_html(client, "https://x.org/", "s", 5)
        assert exc_info.value.limit_type == "upstream"
        assert exc_info.value.retry_after == 12.0

    @pytest.mark.parametrize("status", [401, 403, 404, 410, 400])
    async def test_terminal_statuses(self, status: int) -> None:
        async with _client(lambda r: httpx.Response(status)) as client:
            with pytest.raises(TerminalSourceError):
                await fetch_html(client, "https://x.org/", "s", 5)

    @pytest.mark.parametrize("status", [500, 502, 503])
    async def test_server_errors_retryable(self, status: int) -> None:
        async with _client(lambda r: httpx.Response(status)) as client:
            with pytest.raises(RetryableSourceError):
                await fetch_html(client, "https://x.org/", "s", 5)

    async def test_blocked_page(self) -> None:
        html = "<html><title>Please complete the CAPTCHA</title></html>"
        async with _client(lambda r: httpx.Response(200, text=html)) as client:
            with pytest.raises(RetryableSourceError, match="blocked"):
                await fetch_html(client, "https://x.org/", "s", 5)

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(RetryableSourceError):
                await fetch_html(client, "https://x.org/", "s", 5)

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(RetryableSourceError, match="timed out"):
                await fetch_html(client, "https://x.org/", "s", 5)


# ---------------------------------------------------------------------------
# gather_within
# ---------------------------------------------------------------------------


def _returns(value: list[int], delay: float = 0.0) -> Callable[[], asyncio.Future[list[int]]]:
    async def call() -> list[int]:
        await asyncio.sleep(delay)
        return value
    return call  # type: ignore[return-value]


def _raises(error: Exception) -> Callable[[], asyncio.Future[list[int]]]:
    async def call() -> list[int]:
        raise error
    return call  # type: ignore[return-value]


class TestGatherWithin:
    async def test_merges_results(self) -> None:
        assert sorted(await gather_within("s", [_returns([1]), _returns([2, 3])], 1.0)) == [1, 2, 3]

    async def test_partial_results_on_timeout(self) -> None:
        result = await gather_within("s", [_returns([1]), _returns([2], delay=5)], 0.05)
        assert result == [1]

    async def test_partial_results_on_error(self) -> None:
        result = await gather_within("s", [_returns([1]), _raises(RetryableSourceError("s", "x"))], 1.0)
        assert result == [1]

    async def test_all_failed_raises_first(self) -> None:
        with pytest.raises(TerminalSourceError):
            await gather_within(
                "s",
                [_raises(TerminalSourceError("s", "404")), _raises(RetryableSourceError("s", "503"))],
                1.0,
            )

    async def test_rate_limit_always_propagates(self) -> None:
        with pytest.raises(RateLimitExceededError):
            await gather_within("s", [_returns([1]), _raises(RateLimitExceededError("s", "upstream"))], 1.0)

    async def test_all_timed_out(self) -> None:
        with pytest.raises(RetryableSourceError, match="timed out"):
            await gather_within("s", [_returns([1], delay=5)], 0.05)

    async def test_no_calls(self) -> None:
        assert await gather_within("s", [], 1.0) == []


# ---------------------------------------------------------------------------
# StaticJobAdapter
# ---------------------------------------------------------------------------


class TestStaticJobAdapter:
    def test_build_url_encodes(self) -> None:
        adapter = StaticJobAdapter(_static_config())
        assert adapter.build_url("icu nurse", "Toronto, ON") == (
            "https://board.org/search?q=icu+nurse&l=Toronto%2C+ON"
        )

    async def test_one_page_per_keyword(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            keyword = request.url.params["q"]
            seen.append(keyword)
            return httpx.Response(200, text=CARD.format(title=f"{keyword} role", slug=keyword))

        async with _client(handler) as client:
            adapter = StaticJobAdapter(_static_config(), client)
            jobs = await adapter.fetch(JobQuery(keywords=["nurse", "rn"]), 5)
        assert sorted(seen) == ["nurse", "rn"]
        assert {j.title for j in jobs} == {"nurse role", "rn role"}  # type: ignore[union-attr]

    async def test_contact_query_ignored(self) -> None:
        adapter = StaticJobAdapter(_static_config())
        assert await adapter.fetch(ContactQuery(company_name="Acme"), 5) == []

    async def test_upstream_429_propagates(self) -> None:
        async with _client(lambda r: httpx.Response(429)) as client:
            adapter = StaticJobAdapter(_static_config(), client)
            with pytest.raises(RateLimitExceededError):
                await adapter.fetch(JobQuery(keywords=["nurse"]), 5)


# ---------------------------------------------------------------------------
# WebsiteContactAdapter
# ---------------------------------------------------------------------------


class TestWebsiteContactAdapter:
    def test_page_urls(self) -> None:
        adapter = WebsiteContactAdapter(WebsiteContactsConfig(id="site", paths=("", "/team")))
        assert adapter.page_urls("https://acme.com") == ["https://acme.com/", "https://acme.com/team"]

    async def test_collects_contacts_from_pages(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/team":
                return httpx.Response(200, text='<a href="mailto:jane.doe@acme.com">Jane Doe</a>')
            return httpx.Response(404)

        async with _client(handler) as client:
            adapter = WebsiteContactAdapter(WebsiteContactsConfig(id="site", paths=("", "/team")), client)
            contacts = await adapter.fetch(
                ContactQuery(company_name="Acme", company_website="https://acme.com"), 5,
            )
        assert [c.name for c in contacts] == ["Jane Doe"]  # type: ignore[union-attr]

    async def test_no_website(self) -> None:
        adapter = WebsiteContactAdapter(WebsiteContactsConfig(id="site"))
        assert await adapter.fetch(ContactQuery(company_name="Acme"), 5) == []

    async def test_all_404_is_retryable(self) -> None:
        async with _client(lambda r: httpx.Response(404)) as client:
            adapter = WebsiteContactAdapter(WebsiteContactsConfig(id="site", paths=("", "/team")), client)
            with pytest.raises(RetryableSourceError):
                await adapter.fetch(ContactQuery(company_name="Acme", company_website="https://acme.com"), 5)
