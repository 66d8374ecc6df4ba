"""Anthropic Messages API provider."""

from aggregator.llm.base import LLMProvider, request_limits

_MAX_TOKENS = 4096


class AnthropicProvider(LLMProvider):
    provider_id = "anthropic"
    default_model = "claude-sonnet-4-20250514"
    env_var = "ANTHROPIC_API_KEY"

    def _send(
        self,
        prompt: str,
        *,
        model: str,
        system: str,
        api_key: str | None,
        timeout: float | None,
    ) -> str:
        try:
            import anthropic
        except ImportError:
            msg = "anthropic is required for this provider. Install with: pip install 'job-source-aggregator[anthropic]'"
            raise ImportError(msg) from None

        message = anthropic.Anthropic(api_key=api_key, **request_limits(timeout)).messages.create(
            model=model,
            max_tokens=_MAX_TOKENS,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        blocks = [getattr(block, "text", "") for block in message.content]
        return "".join(blocks)
