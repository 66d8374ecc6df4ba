"""Error taxonomy for the aggregation core.

Only MalformedQueryError reaches callers. Every other error is absorbed by
the orchestrator and reported through response metadata.
"""


class AggregatorError(Exception):
    """Base class for all aggregation errors."""


class MalformedQueryError(AggregatorError, ValueError):
    """The query is missing required fields. Raised before any tier runs."""


class SourceUnavailableError(AggregatorError):
    """A source adapter could not be reached or failed mid-request."""

    def __init__(self, source_id: str, message: str) -> None:
        self.source_id = source_id
        super().__init__(f"{source_id}: {message}")


class RetryableSourceError(SourceUnavailableError):
    """Transient failure (timeout, 429, 5xx, blocked page).

    A fallback strategy moves on to its fallback adapter on this error.
    """


class TerminalSourceError(SourceUnavailableError):
    """Permanent failure (404, 401, bad configuration).

    A fallback strategy stops here instead of trying its fallback adapter.
    """


class RateLimitExceededError(AggregatorError):
    """A source's request quota is exhausted."""

    def __init__(
        self,
        source_id: str,
        limit_type: str,
        retry_after: float | None = None,
    ) -> None:
        self.source_id = source_id
        self.limit_type = limit_type
        self.retry_after = retry_after
        detail = f" (retry after {retry_after:.1f}s)" if retry_after is not None else ""
        super().__init__(f"Rate limit exceeded for {source_id}: {limit_type}{detail}")
