"""Providers speaking the OpenAI chat-completions protocol."""

from aggregator.llm.base import LLMProvider, request_limits


class ChatCompletionsProvider(LLMProvider):
    """OpenAI SDK client, optionally pointed at a compatible endpoint."""

    base_url: str | None = None
    missing_sdk_message = "openai is required for this provider."

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
            import openai
        except ImportError:
            msg = f"{self.missing_sdk_message} Install with: pip install 'job-source-aggregator[openai]'"
            raise ImportError(msg) from None

        client = openai.OpenAI(api_key=api_key, base_url=self.base_url, **request_limits(timeout))
        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        return response.choices[0].message.content or ""


class OpenAIProvider(ChatCompletionsProvider):
    provider_id = "openai"
    default_model = "gpt-4o-mini"
    env_var = "OPENAI_API_KEY"
