"""Sentinel test configuration — shared fixtures for unit and integration tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from sentinel.playbook.models import ElementSnapshot


# ---------------------------------------------------------------------------
# Async backend
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from sentinel.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def playbook_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, Path]:
    """Point the playbook settings at temporary directories via env vars."""
    dirs = {
        "definitions": tmp_path / "definitions",
        "templates": tmp_path / "templates",
        "history": tmp_path / "history",
        "screenshots": tmp_path / "screenshots",
    }
    monkeypatch.setenv("SENTINEL_PLAYBOOK__DEFINITIONS_DIR", str(dirs["definitions"]))
    monkeypatch.setenv("SENTINEL_PLAYBOOK__TEMPLATES_DIR", str(dirs["templates"]))
    monkeypatch.setenv("SENTINEL_PLAYBOOK__HISTORY_DIR", str(dirs["history"]))
    monkeypatch.setenv("SENTINEL_PLAYBOOK__SCREENSHOT_DIR", str(dirs["screenshots"]))
    return dirs


# ---------------------------------------------------------------------------
# Fake browser
# ---------------------------------------------------------------------------


class ElementNotFound(Exception):
    """Raised by ``FakePage`` when a waited-for selector has no match."""


class FakePage:
    """In-memory ``PageSession``.

    ``elements`` maps a selector to the snapshots it matches. Hidden
    selectors exist but are not visible. ``click_failures`` makes the
    next N clicks on a selector raise, and ``on_click`` hooks may
    mutate the DOM when a selector is clicked.
    """

    def __init__(self) -> None:
        self.url = ""
        self.elements: dict[str, list[ElementSnapshot]] = {}
        self.hidden: set[str] = set()
        self.eval_results: dict[str, Any] = {}
        self.click_failures: dict[str, int] = {}
        self.on_click: dict[str, Callable[[FakePage], None]] = {}
        self.visited: list[str] = []
        self.clicks: list[str] = []
        self.filled: dict[str, str] = {}
        self.selected: dict[str, str] = {}
        self.scrolls: list[tuple[str, Any]] = []
        self.screenshots: list[Path] = []
        self.close_count = 0

    def add(self, selector: str, *texts: str, **attributes: str) -> None:
        """Register elements matching *selector*, one per text."""
        self.elements[selector] = [
            ElementSnapshot(text_content=t, inner_html=f"<span>{t}</span>", attributes=dict(attributes))
            for t in texts
        ]

    async def goto(self, url: str, timeout_ms: int) -> None:
        self.visited.append(url)
        self.url = url

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        if not self.elements.get(selector):
            raise ElementNotFound(f"Timeout {timeout_ms}ms exceeded waiting for {selector}")

    async def click(self, selector: str) -> None:
        if self.click_failures.get(selector, 0) > 0:
            self.click_failures[selector] -= 1
            raise ElementNotFound(f"Element {selector} is not clickable")
        self.clicks.append(selector)
        hook = self.on_click.get(selector)
        if hook is not None:
            hook(self)

    async def fill(self, selector: str, value: str) -> None:
        self.filled[selector] = value

    async def select_option(self, selector: str, value: str) -> None:
        self.selected[selector] = value

    async def query_all(self, selector: str) -> list[ElementSnapshot]:
        return list(self.elements.get(selector, []))

    async def exists(self, selector: str) -> bool:
        return bool(self.elements.get(selector))

    async def is_visible(self, selector: str) -> bool:
        return bool(self.elements.get(selector)) and selector not in self.hidden

    async def is_hidden(self, selector: str) -> bool:
        return not await self.is_visible(selector)

    async def text_content(self, selector: str) -> str | None:
        matches = self.elements.get(selector)
        return matches[0].text_content if matches else None

    async def scroll_into_view(self, selector: str, timeout_ms: int) -> None:
        self.scrolls.append(("into_view", selector))

    async def scroll_by(self, pixels: int) -> None:
        self.scrolls.append(("by", pixels))

    async def scroll_to(self, pixels: int) -> None:
        self.scrolls.append(("to", pixels))

    async def screenshot(self, path: Path) -> None:
        self.screenshots.append(path)

    async def evaluate(self, expression: str) -> Any:
        return self.eval_results.get(expression)

    async def close(self) -> None:
        self.close_count += 1


class FakeBrowser:
    """``BrowserSession`` that hands out one pre-built ``FakePage``."""

    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.pages_opened = 0

    async def new_page(self) -> FakePage:
        self.pages_opened += 1
        return self.page


@pytest.fixture()
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture()
def fake_browser(fake_page: FakePage) -> FakeBrowser:
    return FakeBrowser(fake_page)


@pytest.fixture()
def card_page(fake_page: FakePage) -> FakePage:
    """A listings page with two opportunity cards."""
    fake_page.add(".card", "Card one", "Card two")
    fake_page.add(".card h3", "Painting Grant", "Sculpture Residency")
    fake_page.elements[".card a"] = [
        ElementSnapshot(text_content="Apply", attributes={"href": "https://grants.example.org/a"}),
        ElementSnapshot(text_content="Apply", attributes={"href": "https://grants.example.org/b"}),
    ]
    fake_page.add(".card .org", "Arts Council", "Open Studios")
    return fake_page


# ---------------------------------------------------------------------------
# Playbook fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def playbook_data() -> dict[str, Any]:
    """Raw camelCase definition that extracts the ``card_page`` listings."""
    return {
        "id": "grants-board",
        "name": "Grants Board",
        "description": "Open calls on the grants board",
        "version": "1.0.0",
        "author": "qa",
        "tags": ["grants", "arts"],
        "variables": {"baseUrl": "https://grants.example.org"},
        "actions": [
            {"id": "open", "type": "navigate", "value": "${baseUrl}/listings"},
            {"id": "wait-cards", "type": "wait", "selector": ".card"},
        ],
        "extractionRules": [
            {"field": "title", "selector": ".card h3", "required": True},
            {"field": "url", "selector": ".card a", "attribute": "href", "required": True},
            {"field": "org", "selector": ".card .org"},
        ],
        "errorHandling": {
            "continueOnError": False,
            "maxRetries": 0,
            "retryDelay": 0,
            "screenshotOnError": False,
            "logLevel": "debug",
        },
        "metadata": {"targetSite": "grants.example.org", "complexity": "simple", "successRate": 80},
    }


@pytest.fixture()
def sleep() -> AsyncMock:
    """Recording stand-in for ``asyncio.sleep``."""
    return AsyncMock(return_value=None)


@pytest.fixture()
def store(tmp_path: Path):
    """Disposable ``PlaybookStore`` under a temporary directory."""
    from sentinel.playbook.store import PlaybookStore

    return PlaybookStore(tmp_path / "definitions", tmp_path / "templates", tmp_path / "history")


@pytest.fixture()
def engine(tmp_path: Path, sleep: AsyncMock):
    """Engine that writes screenshots to a temporary directory and never really sleeps."""
    from sentinel.playbook.engine import PlaybookEngine

    return PlaybookEngine(screenshot_dir=tmp_path / "screenshots", sleep=sleep)


@pytest.fixture()
def manager(store, engine):
    """Initialized ``PlaybookManager`` over the temporary store."""
    from sentinel.playbook.manager import PlaybookManager

    mgr = PlaybookManager(store, engine)
    mgr.initialize()
    return mgr


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that exercise the API or CLI end to end")
