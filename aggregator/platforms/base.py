"""Abstract base class for source adapters."""

from abc import ABC, abstractmethod

from aggregator.core.schemas import ContactCandidate, JobCandidate, Query, SourceTier


class SourceAdapter(ABC):
    """Base class that every source adapter must implement.

    ``fetch`` returns an empty list for zero results; it raises
    SourceUnavailableError (or a subclass) when the source cannot be used
    and RateLimitExceededError when the source refuses further requests.
    """

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Unique identifier for this source (matches its config id)."""

    @property
    @abstractmethod
    def tier(self) -> SourceTier:
        """Fallback tier this adapter belongs to."""

    @abstractmethod
    async def fetch(
        self,
        query: Query,
        timeout: float,
    ) -> list[JobCandidate | ContactCandidate]:
        """Return raw (unvalidated) candidates within ``timeout`` seconds."""
