"""Hosted LLM providers for the AI-fallback tier.

Provider modules import their SDK only when a prompt is sent, so an
installation without the optional extras can still list and configure them::

    provider = get_provider("perplexity")
    records = parse_json_payload(provider.complete(prompt))
"""

import importlib

from aggregator.llm.base import LLMProvider, parse_json_payload

__all__ = ["LLMProvider", "available_providers", "get_provider", "parse_json_payload"]

_PROVIDERS: dict[str, str] = {
    "anthropic": "aggregator.llm.anthropic:AnthropicProvider",
    "gemini": "aggregator.llm.gemini:GeminiProvider",
    "openai": "aggregator.llm.openai:OpenAIProvider",
    "perplexity": "aggregator.llm.perplexity:PerplexityProvider",
}


def get_provider(name: str) -> LLMProvider:
    """Build the provider registered under ``name``; ValueError if there is none."""
    target = _PROVIDERS.get(name)
    if target is None:
        msg = f"Unknown LLM provider '{name}'. Available: {', '.join(available_providers())}"
        raise ValueError(msg)
    module_path, _, class_name = target.partition(":")
    provider_cls: type[LLMProvider] = getattr(importlib.import_module(module_path), class_name)
    return provider_cls()


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)
