"""Tests for the LLM provider registry, the SDK calls and reply parsing."""

from unittest.mock import MagicMock, patch

import pytest

from aggregator.llm import available_providers, get_provider, parse_json_payload
from aggregator.llm.base import SYSTEM_PROMPT, LLMProvider

PROVIDERS = ["anthropic", "gemini", "openai", "perplexity"]


class EchoProvider(LLMProvider):
    """Keyless provider that records what ``complete`` forwards."""

    provider_id = "echo"
    default_model = "echo-1"

    def __init__(self) -> None:
        self.sent: list[dict[str, object]] = []

    def _send(
        self,
        prompt: str,
        *,
        model: str,
        system: str,
        api_key: str | None,
        timeout: float | None,
    ) -> str:
        self.sent.append({"prompt": prompt, "model": model, "system": system, "timeout": timeout})
        return prompt.upper()


def _openai_sdk(content: str | None = "ok") -> MagicMock:
    sdk = MagicMock()
    sdk.OpenAI.return_value.chat.completions.create.return_value.choices[0].message.content = content
    return sdk


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    @pytest.mark.parametrize("name", PROVIDERS)
    def test_builds_registered_provider(self, name: str) -> None:
        provider = get_provider(name)
        assert isinstance(provider, LLMProvider)
        assert provider.provider_id == name

    def test_unknown_name_lists_choices(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider 'nope'. Available: anthropic, gemini"):
            get_provider("nope")

    def test_available_providers(self) -> None:
        assert available_providers() == PROVIDERS

    @pytest.mark.parametrize(
        ("name", "model", "env_var"),
        [
            ("anthropic", "claude-sonnet-4-20250514", "ANTHROPIC_API_KEY"),
            ("gemini", "gemini-2.5-flash", "GOOGLE_API_KEY"),
            ("openai", "gpt-4o-mini", "OPENAI_API_KEY"),
            ("perplexity", "sonar-pro", "PERPLEXITY_API_KEY"),
        ],
    )
    def test_identity(self, name: str, model: str, env_var: str) -> None:
        provider = get_provider(name)
        assert (provider.default_model, provider.env_var) == (model, env_var)


# ---------------------------------------------------------------------------
# complete(): defaults and key lookup
# ---------------------------------------------------------------------------


class TestComplete:
    def test_defaults_applied(self) -> None:
        provider = EchoProvider()
        assert provider.complete("find nurses") == "FIND NURSES"
        assert provider.sent == [
            {"prompt": "find nurses", "model": "echo-1", "system": SYSTEM_PROMPT, "timeout": None},
        ]

    def test_overrides_forwarded(self) -> None:
        provider = EchoProvider()
        provider.complete("q", "echo-2", system="", timeout=12.5)
        assert provider.sent[0]["model"] == "echo-2"
        assert provider.sent[0]["system"] == ""
        assert provider.sent[0]["timeout"] == 12.5

    @pytest.mark.parametrize("name", PROVIDERS)
    def test_missing_key_raises_before_sdk_import(self, name: str) -> None:
        provider = get_provider(name)
        with (
            patch.dict("os.environ", {}, clear=True),
            patch.object(type(provider), "_send") as send,
            pytest.raises(ValueError, match=f"{provider.env_var} environment variable is required"),
        ):
            provider.complete("find jobs")
        send.assert_not_called()

    @pytest.mark.parametrize(
        ("name", "missing", "message"),
        [
            ("anthropic", {"anthropic": None}, "anthropic is required"),
            ("gemini", {"google": None, "google.genai": None}, "google-genai is required"),
            ("openai", {"openai": None}, "openai is required for this provider"),
            ("perplexity", {"openai": None}, "openai is required for Perplexity"),
        ],
    )
    def test_missing_sdk(self, name: str, missing: dict[str, None], message: str) -> None:
        provider = get_provider(name)
        with (
            patch.dict("os.environ", {str(provider.env_var): "k"}),
            patch.dict("sys.modules", missing),
            pytest.raises(ImportError, match=message),
        ):
            provider.complete("find jobs")


# ---------------------------------------------------------------------------
# SDK calls
# ---------------------------------------------------------------------------


class TestSdkCalls:
    def test_anthropic_joins_text_blocks(self) -> None:
        sdk = MagicMock()
        create = sdk.Anthropic.return_value.messages.create
        create.return_value.content = [MagicMock(text="[{"), MagicMock(spec=[]), MagicMock(text="}]")]
        with (
            patch.dict("os.environ", {"ANTHROPIC_API_KEY": "k"}),
            patch.dict("sys.modules", {"anthropic": sdk}),
        ):
            assert get_provider("anthropic").complete("q", system="custom") == "[{}]"
        sdk.Anthropic.assert_called_once_with(api_key="k")
        assert create.call_args.kwargs["system"] == "custom"
        assert create.call_args.kwargs["messages"] == [{"role": "user", "content": "q"}]

    def test_openai_default_endpoint(self) -> None:
        sdk = _openai_sdk()
        with (
            patch.dict("os.environ", {"OPENAI_API_KEY": "k"}),
            patch.dict("sys.modules", {"openai": sdk}),
        ):
            get_provider("openai").complete("q", "gpt-4o")
        sdk.OpenAI.assert_called_once_with(api_key="k", base_url=None)
        kwargs = sdk.OpenAI.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}

    def test_perplexity_endpoint_and_model(self) -> None:
        sdk = _openai_sdk('[{"title": "Nurse"}]')
        with (
            patch.dict("os.environ", {"PERPLEXITY_API_KEY": "k"}),
            patch.dict("sys.modules", {"openai": sdk}),
        ):
            raw = get_provider("perplexity").complete("find nurses")
        assert raw == '[{"title": "Nurse"}]'
        sdk.OpenAI.assert_called_once_with(api_key="k", base_url="https://api.perplexity.ai")
        assert sdk.OpenAI.return_value.chat.completions.create.call_args.kwargs["model"] == "sonar-pro"

    def test_empty_chat_reply(self) -> None:
        with (
            patch.dict("os.environ", {"OPENAI_API_KEY": "k"}),
            patch.dict("sys.modules", {"openai": _openai_sdk(None)}),
        ):
            assert get_provider("openai").complete("q") == ""

    def test_gemini_system_instruction(self) -> None:
        genai = MagicMock()
        genai.Client.return_value.models.generate_content.return_value.text = "ok"
        google = MagicMock(genai=genai)
        with (
            patch.dict("os.environ", {"GOOGLE_API_KEY": "k"}),
            patch.dict("sys.modules", {"google": google, "google.genai": genai}),
        ):
            assert get_provider("gemini").complete("q", system="custom") == "ok"
        genai.types.GenerateContentConfig.assert_called_once_with(system_instruction="custom")
        assert genai.Client.return_value.models.generate_content.call_args.kwargs["model"] == "gemini-2.5-flash"
        genai.Client.assert_called_once_with(api_key="k", http_options=None)

    @pytest.mark.parametrize(
        ("name", "sdk_module", "client"),
        [
            ("anthropic", "anthropic", "Anthropic"),
            ("openai", "openai", "OpenAI"),
            ("perplexity", "openai", "OpenAI"),
        ],
    )
    def test_timeout_bounds_the_request(self, name: str, sdk_module: str, client: str) -> None:
        provider = get_provider(name)
        sdk = _openai_sdk()
        sdk.Anthropic.return_value.messages.create.return_value.content = []
        with (
            patch.dict("os.environ", {str(provider.env_var): "k"}),
            patch.dict("sys.modules", {sdk_module: sdk}),
        ):
            provider.complete("q", timeout=7.5)
        kwargs = getattr(sdk, client).call_args.kwargs
        assert (kwargs["timeout"], kwargs["max_retries"]) == (7.5, 0)

    def test_gemini_timeout_in_milliseconds(self) -> None:
        genai = MagicMock()
        genai.Client.return_value.models.generate_content.return_value.text = "ok"
        with (
            patch.dict("os.environ", {"GOOGLE_API_KEY": "k"}),
            patch.dict("sys.modules", {"google": MagicMock(genai=genai), "google.genai": genai}),
        ):
            get_provider("gemini").complete("q", timeout=2.5)
        genai.types.HttpOptions.assert_called_once_with(timeout=2500)
        assert genai.Client.call_args.kwargs["http_options"] is genai.types.HttpOptions.return_value


# ---------------------------------------------------------------------------
# parse_json_payload
# ---------------------------------------------------------------------------


class TestParseJsonPayload:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('[{"a": 1}]', [{"a": 1}]),
            ('```json\n{"jobs": []}\n```', {"jobs": []}),
            ('```\n[1, 2]\n```', [1, 2]),
            ('Here is what I found:\n[{"a": 1}]', [{"a": 1}]),
            ('Results: {"contacts": []}', {"contacts": []}),
        ],
    )
    def test_accepted_shapes(self, raw: str, expected: object) -> None:
        assert parse_json_payload(raw) == expected

    def test_malformed(self) -> None:
        with pytest.raises(ValueError, match="Failed to parse LLM response"):
            parse_json_payload("Sure: [{'title': 'Nurse'")

    def test_no_json(self) -> None:
        with pytest.raises(ValueError, match="no JSON"):
            parse_json_payload("I could not find anything.")
