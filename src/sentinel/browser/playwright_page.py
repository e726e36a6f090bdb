"""Playwright adapters for the browser capability protocols.

Uses the async Playwright API. Requires ``playwright install chromium``
before ``launch_browser`` can start a real browser.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sentinel.playbook.models import ElementSnapshot

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page

    from sentinel.settings.config import BrowserSettings

logger = logging.getLogger(__name__)

# Serialises every matched element into the ElementSnapshot shape.
_SNAPSHOT_JS = """
(elements) => elements.map((el) => ({
  textContent: (el.textContent || "").trim(),
  innerHTML: el.innerHTML,
  attributes: Object.fromEntries(Array.from(el.attributes, (a) => [a.name, a.value])),
}))
"""


class PlaywrightPage:
    """``PageSession`` backed by a Playwright ``Page``."""

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, timeout_ms: int) -> None:
        await self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        await self._page.wait_for_selector(selector, timeout=timeout_ms)

    async def click(self, selector: str) -> None:
        await self._page.click(selector)

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    async def select_option(self, selector: str, value: str) -> None:
        await self._page.select_option(selector, value)

    async def query_all(self, selector: str) -> list[ElementSnapshot]:
        raw = await self._page.eval_on_selector_all(selector, _SNAPSHOT_JS)
        return [ElementSnapshot.model_validate(item) for item in raw]

    async def exists(self, selector: str) -> bool:
        return await self._page.query_selector(selector) is not None

    async def is_visible(self, selector: str) -> bool:
        return await self._page.is_visible(selector)

    async def is_hidden(self, selector: str) -> bool:
        return await self._page.is_hidden(selector)

    async def text_content(self, selector: str) -> str | None:
        # page.text_content() waits for the element; a missing match must return None instead.
        element = await self._page.query_selector(selector)
        if element is None:
            return None
        return await element.text_content()

    async def scroll_into_view(self, selector: str, timeout_ms: int) -> None:
        await self._page.locator(selector).first.scroll_into_view_if_needed(timeout=timeout_ms)

    async def scroll_by(self, pixels: int) -> None:
        await self._page.evaluate("(y) => window.scrollBy(0, y)", pixels)

    async def scroll_to(self, pixels: int) -> None:
        await self._page.evaluate("(y) => window.scrollTo(0, y)", pixels)

    async def screenshot(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._page.screenshot(path=str(path))

    async def evaluate(self, expression: str) -> Any:
        return await self._page.evaluate(expression)

    async def close(self) -> None:
        await self._page.close()


class PlaywrightBrowser:
    """``BrowserSession`` that opens a fresh Playwright page per run."""

    def __init__(self, browser: Browser, *, user_agent: str = "") -> None:
        self._browser = browser
        self._user_agent = user_agent

    async def new_page(self) -> PlaywrightPage:
        kwargs: dict[str, Any] = {}
        if self._user_agent:
            kwargs["user_agent"] = self._user_agent
        page = await self._browser.new_page(**kwargs)
        return PlaywrightPage(page)


@asynccontextmanager
async def launch_browser(settings: BrowserSettings | None = None) -> AsyncIterator[PlaywrightBrowser]:
    """Launch chromium and yield a ``PlaywrightBrowser``; the browser is closed on exit."""
    from playwright.async_api import async_playwright

    if settings is None:
        from sentinel.settings import get_settings

        settings = get_settings().browser

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=settings.headless, timeout=settings.timeout_ms)
        logger.info("Browser started (headless=%s)", settings.headless)
        try:
            yield PlaywrightBrowser(browser, user_agent=settings.user_agent)
        finally:
            await browser.close()
            logger.info("Browser stopped")
