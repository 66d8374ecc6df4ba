"""Page actions for rendered job boards: jittered pauses and scroll-to-load.

Both actions accept a ``deadline`` on the ``time.monotonic()`` clock so a
scrape never spends its whole timeout scrolling one keyword.
"""

import asyncio
import logging
import random
import time
from typing import Any

logger = logging.getLogger(__name__)

MAX_SCROLL_ATTEMPTS = 5
SCROLL_PAUSE = (0.5, 1.5)

# Infinite-scroll boards load the next batch when the viewport nears the end.
_SCROLL_SCRIPT = "window.scrollBy(0, Math.max(window.innerHeight, 600))"


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return deadline - time.monotonic()


async def random_sleep(min_s: float, max_s: float, deadline: float | None = None) -> float:
    """Pause for a random duration in [min_s, max_s], cut short at ``deadline``.

    Returns the duration actually slept.
    """
    low = max(min_s, 0.0)
    duration = random.uniform(low, max(max_s, low))
    remaining = _remaining(deadline)
    if remaining is not None:
        duration = max(0.0, min(duration, remaining))
    if duration:
        await asyncio.sleep(duration)
    return duration


async def count_matches(page: Any, selectors: tuple[str, ...]) -> int:
    """Number of elements matched by the first selector that matches any."""
    for selector in selectors:
        found = await page.locator(selector).count()
        if found:
            return found
    return 0


async def scroll_until_stable(
    page: Any,
    *,
    card_selectors: tuple[str, ...],
    max_attempts: int = MAX_SCROLL_ATTEMPTS,
    target: int | None = None,
    deadline: float | None = None,
) -> int:
    """Scroll until no new cards appear, ``target`` cards are loaded, or time runs out.

    Returns the last card count seen.
    """
    count = await count_matches(page, card_selectors)
    for attempt in range(1, max_attempts + 1):
        if target is not None and count >= target:
            break
        remaining = _remaining(deadline)
        if remaining is not None and remaining <= 0:
            logger.debug("Scroll deadline reached with %d cards", count)
            break
        await page.evaluate(_SCROLL_SCRIPT)
        await random_sleep(*SCROLL_PAUSE, deadline=deadline)
        loaded = await count_matches(page, card_selectors)
        logger.debug("Scroll %d/%d: %d -> %d cards", attempt, max_attempts, count, loaded)
        if loaded <= count:
            break
        count = loaded
    return count
