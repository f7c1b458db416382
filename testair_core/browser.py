"""Minimal browser capability used by the runner, backed by Playwright."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Protocol

from playwright.async_api import BrowserContext, Page, async_playwright

LOGGER = logging.getLogger("testair.browser")


class LocatorLike(Protocol):
    """The subset of Playwright's Locator the runner relies on."""

    @property
    def first(self) -> "LocatorLike":
        ...

    def nth(self, index: int) -> "LocatorLike":
        ...

    async def wait_for(self, *, state: str, timeout: float) -> None:
        ...

    async def click(self, *, timeout: float) -> None:
        ...

    async def fill(self, value: str, *, timeout: float) -> None:
        ...

    async def count(self) -> int:
        ...

    async def inner_text(self) -> str:
        ...


class PageLike(Protocol):
    """The subset of Playwright's Page the runner relies on."""

    url: str

    async def goto(self, url: str, *, wait_until: str, timeout: float) -> Any:
        ...

    def get_by_role(self, role: str, *, name: str) -> LocatorLike:
        ...

    def get_by_text(self, text: str, *, exact: bool = False) -> LocatorLike:
        ...

    def get_by_label(self, text: str) -> LocatorLike:
        ...

    def get_by_placeholder(self, text: str) -> LocatorLike:
        ...

    def locator(self, selector: str) -> LocatorLike:
        ...

    async def wait_for_url(self, url: Any, *, timeout: float) -> None:
        ...

    async def wait_for_timeout(self, timeout: float) -> None:
        ...

    async def screenshot(self, *, path: str, full_page: bool) -> bytes:
        ...

    async def content(self) -> str:
        ...


class BrowserSession(Protocol):
    """One isolated browser session owned by a single run."""

    page: PageLike

    async def start_trace(self) -> None:
        ...

    async def stop_trace(self, path: Path) -> None:
        ...


SessionFactory = Callable[[bool], AsyncContextManager[BrowserSession]]


class PlaywrightSession:
    """BrowserSession over a fresh Playwright browser context."""

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self.context = context
        self.page = page
        self._tracing = False

    async def start_trace(self) -> None:
        await self.context.tracing.start(screenshots=True, snapshots=True, sources=True)
        self._tracing = True

    async def stop_trace(self, path: Path) -> None:
        if not self._tracing:
            return
        self._tracing = False
        await self.context.tracing.stop(path=str(path))


@asynccontextmanager
async def playwright_session(headless: bool = True) -> AsyncIterator[PlaywrightSession]:
    """Launch Chromium and yield a session; the browser is closed on every exit path."""
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=headless)
        context = await browser.new_context()
        try:
            page = await context.new_page()
            yield PlaywrightSession(context, page)
        finally:
            await context.close()
            await browser.close()
            LOGGER.debug("Browser session closed")
