"""Browser capability protocols.

The engine never imports a browser library directly. Anything that
provides these coroutines — the Playwright adapters, a test double, a
remote browser proxy — can drive a playbook run. All timeouts are in
milliseconds. Operations raise on failure; the engine decides whether
that failure is retried, downgraded, or aborts the run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from sentinel.playbook.models import ElementSnapshot


@runtime_checkable
class PageSession(Protocol):
    """A single page owned by one playbook run."""

    @property
    def url(self) -> str:
        """Return the URL currently loaded in the page."""
        ...

    async def goto(self, url: str, timeout_ms: int) -> None: ...

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def select_option(self, selector: str, value: str) -> None: ...

    async def query_all(self, selector: str) -> list[ElementSnapshot]:
        """Return a snapshot of every element matching *selector* (possibly empty)."""
        ...

    async def exists(self, selector: str) -> bool: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def is_hidden(self, selector: str) -> bool: ...

    async def text_content(self, selector: str) -> str | None:
        """Return the text content of the first match, or ``None`` if nothing matches."""
        ...

    async def scroll_into_view(self, selector: str, timeout_ms: int) -> None: ...

    async def scroll_by(self, pixels: int) -> None: ...

    async def scroll_to(self, pixels: int) -> None: ...

    async def screenshot(self, path: Path) -> None: ...

    async def evaluate(self, expression: str) -> Any:
        """Evaluate a side-effect-free expression in page scope.

        The result must be JSON-serialisable. This is the one operation
        whose guarantees depend entirely on the supplied script.
        """
        ...

    async def close(self) -> None: ...


@runtime_checkable
class BrowserSession(Protocol):
    """A browser able to open isolated pages."""

    async def new_page(self) -> PageSession: ...
