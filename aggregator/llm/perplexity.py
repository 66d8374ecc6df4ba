"""Perplexity Sonar: OpenAI-compatible completions grounded in live web search.

The default AI-fallback provider, since its answers cite pages that exist.
"""

from aggregator.llm.openai import ChatCompletionsProvider


class PerplexityProvider(ChatCompletionsProvider):
    provider_id = "perplexity"
    default_model = "sonar-pro"
    env_var = "PERPLEXITY_API_KEY"
    base_url = "https://api.perplexity.ai"
    missing_sdk_message = "openai is required for Perplexity (OpenAI-compatible API)."
