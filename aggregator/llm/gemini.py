"""Google Gemini provider via the google-genai SDK."""

from aggregator.llm.base import LLMProvider


class GeminiProvider(LLMProvider):
    provider_id = "gemini"
    default_model = "gemini-2.5-flash"
    env_var = "GOOGLE_API_KEY"

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
            from google import genai
        except ImportError:
            msg = "google-genai is required for this provider. Install with: pip install 'job-source-aggregator[gemini]'"
            raise ImportError(msg) from None

        http_options = None
        if timeout is not None:
            http_options = genai.types.HttpOptions(timeout=int(timeout * 1000))
        client = genai.Client(api_key=api_key, http_options=http_options)
        response = client.models.generate_content(
            model=model,
            contents=prompt,
            config=genai.types.GenerateContentConfig(system_instruction=system),
        )
        return response.text or ""
