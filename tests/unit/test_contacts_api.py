"""Tests for the JSON contact API adapter."""

from collections.abc import Callable

import httpx
import pytest

from aggregator.core.config import ContactApiConfig
from aggregator.core.errors import RateLimitExceededError, RetryableSourceError, TerminalSourceError
from aggregator.core.schemas import ContactCandidate, ContactQuery, JobQuery
from aggregator.platforms.contacts_api import ContactApiAdapter, extract_items, is_relevant

ENDPOINT = "https://contacts.p.rapidapi.com/search"


@pytest.fixture(autouse=True)
def api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAPIDAPI_KEY", "secret")


def _adapter(handler: Callable[[httpx.Request], httpx.Response]) -> ContactApiAdapter:
    config = ContactApiConfig(id="api", endpoint=ENDPOINT, host_header="contacts.p.rapidapi.com")
    return ContactApiAdapter(config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


QUERY = ContactQuery(company_name="Acme", company_website="https://acme.com")


class TestHelpers:
    def test_extract_items_from_list(self) -> None:
        assert extract_items([{"a": 1}, "junk"]) == [{"a": 1}]

    def test_extract_items_nested(self) -> None:
        assert extract_items({"data": {"contacts": [{"a": 1}]}}) == [{"a": 1}]

    def test_extract_items_unknown_shape(self) -> None:
        assert extract_items({"foo": []}) == []

    def test_relevant_without_hint(self) -> None:
        assert is_relevant("Software Engineer", None) is True

    def test_relevant_hint_match(self) -> None:
        assert is_relevant("Senior Engineering Manager", "engineering manager") is True

    def test_relevant_hiring_term(self) -> None:
        assert is_relevant("Talent Partner", "cto") is True
        assert is_relevant("Head of Human Resources", "cto") is True

    def test_hiring_terms_match_whole_words(self) -> None:
        assert is_relevant("Chrome Developer", "cto") is False


class TestContactApiAdapter:
    async def test_maps_fields_and_sends_headers(self) -> None:
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            seen["company"] = request.url.params["company"]
            seen["domain"] = request.url.params["domain"]
            return httpx.Response(200, json={"contacts": [
                {
                    "full_name": "Jane Doe",
                    "job_title": "Recruiter",
                    "email": "jane@acme.com",
                    "linkedin": "https://www.linkedin.com/in/jane",
                },
                {"title": "No name"},
            ]})

        contacts = await _adapter(handler).fetch(QUERY, 5)
        assert seen["x-rapidapi-key"] == "secret"
        assert seen["x-rapidapi-host"] == "contacts.p.rapidapi.com"
        assert seen["company"] == "Acme"
        assert seen["domain"] == "https://acme.com"
        assert len(contacts) == 1
        jane = contacts[0]
        assert isinstance(jane, ContactCandidate)
        assert jane.name == "Jane Doe"
        assert jane.title == "Recruiter"
        assert jane.linkedin_url == "https://www.linkedin.com/in/jane"
        assert jane.company == "Acme"
        assert jane.raw_confidence == 85

    async def test_title_hint_filters(self) -> None:
        payload = [
            {"name": "Jane", "title": "Recruiter"},
            {"name": "Bob", "title": "Accountant"},
        ]
        adapter = _adapter(lambda r: httpx.Response(200, json=payload))
        contacts = await adapter.fetch(ContactQuery(company_name="Acme", target_title_hint="cto"), 5)
        assert [c.name for c in contacts] == ["Jane"]  # type: ignore[union-attr]

    async def test_job_query_ignored(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(500))
        assert await adapter.fetch(JobQuery(keywords=["nurse"]), 5) == []

    async def test_missing_key_is_terminal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("RAPIDAPI_KEY")
        with pytest.raises(TerminalSourceError, match="RAPIDAPI_KEY"):
            await _adapter(lambda r: httpx.Response(200, json=[])).fetch(QUERY, 5)

    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (429, RateLimitExceededError),
            (503, RetryableSourceError),
            (403, TerminalSourceError),
        ],
    )
    async def test_status_mapping(self, status: int, error: type[Exception]) -> None:
        with pytest.raises(error):
            await _adapter(lambda r: httpx.Response(status)).fetch(QUERY, 5)

    async def test_invalid_json(self) -> None:
        with pytest.raises(RetryableSourceError, match="invalid JSON"):
            await _adapter(lambda r: httpx.Response(200, text="<html>")).fetch(QUERY, 5)

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RetryableSourceError, match="timed out"):
            await _adapter(handler).fetch(QUERY, 5)
