"""Provider interface for the AI-fallback tier and parsing of its replies.

Providers are synchronous; the adapter runs them with ``asyncio.to_thread``.
Subclasses declare their identity as class attributes and implement
``_send``; key lookup and prompt defaults live in ``complete``.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a research assistant that finds real, currently published records "
    "on the public web. Never invent companies, people, URLs or email addresses; "
    "omit any field you cannot source. Return ONLY JSON (no markdown, no "
    "explanation) in the exact shape the user asks for."
)

_FENCED = re.compile(r"^```[a-zA-Z]*\s*\n?(?P<body>.*?)\n?```\s*$", re.DOTALL)


def request_limits(timeout: float | None) -> dict[str, Any]:
    """Client kwargs for the OpenAI and Anthropic SDKs: one attempt, bounded by ``timeout``."""
    if timeout is None:
        return {}
    return {"timeout": timeout, "max_retries": 0}


def parse_json_payload(raw_text: str) -> Any:
    """Decode the JSON in a model reply.

    Accepts a bare document, one wrapped in a markdown fence, or one that
    follows a short preamble (decoding starts at the first ``[`` or ``{``).
    """
    text = raw_text.strip()
    fenced = _FENCED.match(text)
    if fenced:
        text = fenced.group("body").strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        offsets = [i for i in (text.find("["), text.find("{")) if i >= 0]
        if not offsets:
            msg = "LLM response contains no JSON"
            raise ValueError(msg) from None

    try:
        return json.loads(text[min(offsets):])
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM response as JSON: {e}"
        raise ValueError(msg) from e


class LLMProvider(ABC):
    """A hosted model that answers one prompt with one block of text."""

    provider_id: ClassVar[str]
    default_model: ClassVar[str]
    env_var: ClassVar[str | None] = None

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Send ``prompt`` and return the raw reply text.

        ``model`` falls back to ``default_model`` and ``system`` to
        ``SYSTEM_PROMPT``. ``timeout`` bounds the HTTP request inside the SDK
        (retries disabled), so the call ends even when its caller has given up. Raises ValueError when the API key is unset and
        ImportError when the provider's SDK is not installed.
        """
        api_key = self._api_key()
        use_model = model or self.default_model
        logger.info("Querying %s (%s)...", self.provider_id, use_model)
        return self._send(
            prompt,
            model=use_model,
            system=SYSTEM_PROMPT if system is None else system,
            api_key=api_key,
            timeout=timeout,
        )

    def _api_key(self) -> str | None:
        if self.env_var is None:
            return None
        key = os.environ.get(self.env_var)
        if not key:
            msg = f"{self.env_var} environment variable is required"
            raise ValueError(msg)
        return key

    @abstractmethod
    def _send(
        self,
        prompt: str,
        *,
        model: str,
        system: str,
        api_key: str | None,
        timeout: float | None,
    ) -> str:
        """Make the SDK call and return the reply text ("" when empty)."""
