"""Shared pytest fixtures: an in-memory browser standing in for Playwright."""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError


class FakeLocator:
    """Locator keyed by how it was built, e.g. ``role:button:Sign in`` or ``css:#q``."""

    def __init__(self, page: "FakePage", key: str, index: int = 0) -> None:
        self.page = page
        self.key = key
        self.index = index

    @property
    def first(self) -> "FakeLocator":
        return self

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.page, self.key, index)

    def _require(self, timeout: float) -> None:
        if self.key not in self.page.elements:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.key}")

    async def wait_for(self, *, state: str, timeout: float) -> None:
        self.page.actions.append(("wait_for", self.key, state))
        self._require(timeout)

    async def click(self, *, timeout: float) -> None:
        self._require(timeout)
        self.page.actions.append(("click", self.key))
        if self.key in self.page.navigations:
            self.page.url = self.page.navigations[self.key]

    async def fill(self, value: str, *, timeout: float) -> None:
        self._require(timeout)
        self.page.actions.append(("fill", self.key, value))

    async def count(self) -> int:
        return len(self.page.elements.get(self.key, []))

    async def inner_text(self) -> str:
        return self.page.elements[self.key][self.index]


class FakePage:
    """Page whose DOM is a dict of locator keys to element texts."""

    def __init__(self) -> None:
        self.url = "about:blank"
        self.elements: Dict[str, List[str]] = {}
        self.navigations: Dict[str, str] = {}
        self.unreachable: List[str] = []
        self.actions: List[tuple] = []
        self.html = "<html><body>fake page</body></html>"
        self.screenshot_error: Optional[Exception] = None

    def add(self, key: str, *texts: str) -> "FakePage":
        self.elements[key] = list(texts) or [""]
        return self

    async def goto(self, url: str, *, wait_until: str, timeout: float) -> None:
        self.actions.append(("goto", url))
        if url in self.unreachable:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url

    def get_by_role(self, role: str, *, name: str) -> FakeLocator:
        return FakeLocator(self, f"role:{role}:{name}")

    def get_by_text(self, text: str, *, exact: bool = False) -> FakeLocator:
        return FakeLocator(self, f"text:{text}" if exact else f"text~:{text}")

    def get_by_label(self, text: str) -> FakeLocator:
        return FakeLocator(self, f"label:{text}")

    def get_by_placeholder(self, text: str) -> FakeLocator:
        return FakeLocator(self, f"placeholder:{text}")

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, f"css:{selector}")

    async def wait_for_url(self, url, *, timeout: float) -> None:
        matched = url(self.url) if callable(url) else url == self.url
        if not matched:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for URL")

    async def wait_for_timeout(self, timeout: float) -> None:
        self.actions.append(("wait_for_timeout", timeout))

    async def screenshot(self, *, path: str, full_page: bool) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        data = b"\x89PNG fake"
        Path(path).write_bytes(data)
        return data

    async def content(self) -> str:
        return self.html


class FakeSession:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.tracing = False
        self.closed = False

    async def start_trace(self) -> None:
        self.tracing = True

    async def stop_trace(self, path: Path) -> None:
        self.tracing = False
        Path(path).write_bytes(b"PK fake trace")


class FakeSessionFactory:
    """Callable matching ``SessionFactory``; every call opens a new session on the same page."""

    def __init__(self, page: FakePage, fail_launch: Optional[Exception] = None) -> None:
        self.page = page
        self.fail_launch = fail_launch
        self.sessions: List[FakeSession] = []

    def __call__(self, headless: bool = True):
        return self._open()

    @asynccontextmanager
    async def _open(self):
        if self.fail_launch is not None:
            raise self.fail_launch
        session = FakeSession(self.page)
        self.sessions.append(session)
        try:
            yield session
        finally:
            session.closed = True


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def session_factory(fake_page: FakePage) -> FakeSessionFactory:
    return FakeSessionFactory(fake_page)


@pytest.fixture
def make_session_factory(fake_page: FakePage):
    """Build a factory with custom behaviour, e.g. ``make_session_factory(fail_launch=exc)``."""
    return lambda **kwargs: FakeSessionFactory(fake_page, **kwargs)
