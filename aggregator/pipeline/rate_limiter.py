"""Per-source outbound rate limiting shared across requests.

Each source gets a sliding one-minute window plus an optional daily cap.
Daily counters live in SQLite (``quota`` table) so they survive restarts
and reset implicitly when the date changes.

Callers queue on a per-source asyncio lock. A caller that would have to
wait longer than ``max_wait_seconds`` gets RateLimitExceededError instead,
and the source enters a cooldown during which every caller is refused
immediately.
"""

import asyncio
import logging
import sqlite3
import time
from collections import deque
from collections.abc import Awaitable, Callable

from aggregator.core.config import RateLimitConfig
from aggregator.core.db import get_quota, update_quota
from aggregator.core.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 60.0
DEFAULT_COOLDOWN_SECONDS = 60.0


class SourceRateLimiter:
    """Sliding-window + daily limiter for one source.

    Usage::

        limiter = SourceRateLimiter("board-a", RateLimitConfig(requests_per_minute=10))
        await limiter.acquire()   # may sleep, may raise RateLimitExceededError
        ...  # do request
    """

    def __init__(
        self,
        source_id: str,
        config: RateLimitConfig | None,
        conn: sqlite3.Connection | None = None,
        *,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.source_id = source_id
        self._config = config
        self._conn = conn
        self._monotonic = monotonic
        self._sleep = sleep
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()
        self._cooldown_until = 0.0
        self._memory_daily = 0

    def in_cooldown(self) -> bool:
        return self._monotonic() < self._cooldown_until

    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._monotonic())

    def trip(self, retry_after: float | None = None) -> None:
        """Put the source into cooldown (e.g. after an upstream 429)."""
        if retry_after is not None:
            duration = retry_after
        elif self._config is not None:
            duration = self._config.cooldown_seconds
        else:
            duration = DEFAULT_COOLDOWN_SECONDS
        self._cooldown_until = max(self._cooldown_until, self._monotonic() + duration)
        logger.warning("Source '%s' cooling down for %.1fs", self.source_id, duration)

    def requests_today(self) -> int:
        if self._conn is not None:
            return get_quota(self._conn, self.source_id)
        return self._memory_daily

    async def acquire(self) -> None:
        """Reserve one request slot or raise RateLimitExceededError."""
        if self.in_cooldown():
            raise RateLimitExceededError(self.source_id, "cooldown", self.cooldown_remaining())
        if self._config is None:
            return

        async with self._lock:
            daily_limit = self._config.daily_limit
            if daily_limit is not None and self.requests_today() >= daily_limit:
                logger.info(
                    "Daily quota reached for '%s': %d/%d requests",
                    self.source_id, self.requests_today(), daily_limit,
                )
                raise RateLimitExceededError(self.source_id, "daily")

            wait = self._wait_time()
            if wait > self._config.max_wait_seconds:
                self.trip(wait)
                raise RateLimitExceededError(self.source_id, "per_minute", wait)
            if wait > 0:
                logger.debug("Rate limit for '%s': waiting %.2fs", self.source_id, wait)
                await self._sleep(wait)
                self._prune()

            self._window.append(self._monotonic())
            self._record_daily()

    def _prune(self) -> None:
        cutoff = self._monotonic() - _WINDOW_SECONDS
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def _wait_time(self) -> float:
        self._prune()
        if len(self._window) < self._config.requests_per_minute:
            return 0.0
        return max(0.0, self._window[0] + _WINDOW_SECONDS - self._monotonic())

    def _record_daily(self) -> None:
        if self._config is None or self._config.daily_limit is None:
            return
        if self._conn is not None:
            update_quota(self._conn, self.source_id)
        else:
            self._memory_daily += 1


class RateLimiterRegistry:
    """One SourceRateLimiter per source id, created on first use.

    Sources without a configured limit still get a limiter so an upstream
    429 can put them into cooldown; it never delays or counts requests.
    """

    def __init__(
        self,
        configs: dict[str, RateLimitConfig],
        conn: sqlite3.Connection | None = None,
    ) -> None:
        self._configs = configs
        self._conn = conn
        self._limiters: dict[str, SourceRateLimiter] = {}

    def get(self, source_id: str) -> SourceRateLimiter:
        limiter = self._limiters.get(source_id)
        if limiter is not None:
            return limiter
        limiter = SourceRateLimiter(source_id, self._configs.get(source_id), self._conn)
        self._limiters[source_id] = limiter
        return limiter

    def in_cooldown(self, source_id: str) -> bool:
        return self.get(source_id).in_cooldown()

    def trip(self, source_id: str, retry_after: float | None = None) -> None:
        self.get(source_id).trip(retry_after)
