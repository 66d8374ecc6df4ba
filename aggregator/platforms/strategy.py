"""Two-stage adapter: preferred source first, fallback source second.

Decision rule:
  - preferred returns records           -> use them, fallback never runs
  - preferred returns nothing           -> try fallback
  - preferred raises RetryableSourceError
    or a plain SourceUnavailableError   -> try fallback
  - preferred raises TerminalSourceError
    or RateLimitExceededError           -> re-raise, fallback never runs

The fallback gets whatever is left of the timeout budget.
"""

import logging
import time

from aggregator.core.errors import RateLimitExceededError, SourceUnavailableError, TerminalSourceError
from aggregator.core.schemas import ContactCandidate, JobCandidate, Query, SourceTier
from aggregator.platforms.base import SourceAdapter

logger = logging.getLogger(__name__)


class PreferredThenFallbackAdapter(SourceAdapter):
    """Compose two adapters for the same source behind one source id."""

    def __init__(
        self,
        source_id: str,
        preferred: SourceAdapter,
        fallback: SourceAdapter,
    ) -> None:
        self._source_id = source_id
        self.preferred = preferred
        self.fallback = fallback

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def tier(self) -> SourceTier:
        return self.preferred.tier

    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        started = time.monotonic()
        try:
            records = await self.preferred.fetch(query, timeout)
        except (TerminalSourceError, RateLimitExceededError):
            raise
        except SourceUnavailableError as e:
            logger.info("%s: preferred adapter failed (%s), trying fallback", self._source_id, e)
        else:
            if records:
                return records
            logger.info("%s: preferred adapter returned nothing, trying fallback", self._source_id)

        remaining = timeout - (time.monotonic() - started)
        if remaining <= 0:
            logger.info("%s: no time left for fallback adapter", self._source_id)
            return []
        return await self.fallback.fetch(query, remaining)

    async def aclose(self) -> None:
        for adapter in (self.preferred, self.fallback):
            closer = getattr(adapter, "aclose", None)
            if closer is not None:
                await closer()
