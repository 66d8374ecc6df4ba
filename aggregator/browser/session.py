"""Short-lived patchright sessions for the headless adapters.

Each fetch opens its own session and tears it down on exit, including when
the orchestrator cancels the fetch at its timeout. Heavy resources (images,
media, fonts) are blocked by default; the adapters only read the DOM.
"""

import json
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from types import TracebackType
from typing import Any

from patchright.async_api import Page, Route, async_playwright

from aggregator.core.config import BrowserConfig

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserSession:
    """One Chromium instance, one context and one page, closed together.

    Usage::

        async with BrowserSession(config) as session:
            await session.page.goto(url)
            html = await session.page.content()
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._stack: AsyncExitStack | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            msg = "BrowserSession not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._page

    async def __aenter__(self) -> "BrowserSession":
        stack = AsyncExitStack()
        try:
            playwright = await async_playwright().start()
            stack.push_async_callback(playwright.stop)
            browser = await playwright.chromium.launch(headless=self._config.headless)
            stack.push_async_callback(browser.close)
            context = await browser.new_context()
            stack.push_async_callback(context.close)

            cookies = _load_cookies(self._config.cookies_path)
            if cookies:
                await context.add_cookies(cookies)
                logger.debug("Session starts with %d cookies", len(cookies))
            if self._config.block_resources:
                await context.route("**/*", _block_heavy_resources)
            context.set_default_timeout(self._config.timeout_ms)
            self._page = await context.new_page()
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._page = None
        stack, self._stack = self._stack, None
        if stack is not None:
            await stack.aclose()


def _load_cookies(path: str | None) -> list[dict[str, Any]]:
    """Cookies exported as a JSON array; entries without name/value are skipped."""
    if not path:
        return []
    cookie_path = Path(path)
    if not cookie_path.is_file():
        logger.debug("Cookie file not found: %s", path)
        return []
    try:
        data = json.loads(cookie_path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable cookie file %s: %s", path, e)
        return []
    if not isinstance(data, list):
        logger.warning("Ignoring cookie file %s: expected a JSON array", path)
        return []
    cookies = [c for c in data if isinstance(c, dict) and c.get("name") and "value" in c]
    if len(cookies) < len(data):
        logger.debug("Skipped %d malformed cookies in %s", len(data) - len(cookies), path)
    return cookies
