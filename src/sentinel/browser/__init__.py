"""Controlled browser session capability consumed by the playbook engine.

Modules:

* ``session`` — ``BrowserSession`` / ``PageSession`` protocols.
* ``playwright_page`` — adapters implementing the protocols over Playwright.
"""

from sentinel.browser.session import BrowserSession, PageSession

__all__ = ["BrowserSession", "PageSession"]
