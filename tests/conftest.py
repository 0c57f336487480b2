"""Pytest fixtures for comet-monkey tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from cometmonkey.discovery import DISCOVERY_SCRIPT
from cometmonkey.events import EventBuffer
from cometmonkey.exceptions import ElementNotInteractableError, NavigationError
from cometmonkey.interaction import BUTTON_RESOLVE_SCRIPT, FORM_FIELDS_SCRIPT
from cometmonkey.session import NavigationResponse


class FakeSession:
    """
    In-memory stand-in for PageSession.

    Script evaluations are answered by identity of the script constant:
    discovery, form-field and button-resolution scripts are derived from
    the page description, anything else comes from ``scripts``. A script
    result that is an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        url: str = "https://example.com/",
        discovery: dict[str, Any] | None = None,
        forms: dict[str, dict[str, Any]] | None = None,
        scripts: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cookies: list[dict[str, Any]] | None = None,
    ) -> None:
        self.url = url
        self.discovery = discovery or {}
        self.forms = forms or {}
        self.scripts = scripts or {}
        self.cookies = cookies or []
        self.events = EventBuffer()
        self._response = NavigationResponse(url=url, status=200, headers=headers) if headers is not None else None

        self.failing_selectors: set[str] = set()
        self.disabled_selectors: set[str] = set()
        self.unreachable = False

        self.navigations: list[str] = []
        self.clicks: list[str] = []
        self.fills: list[tuple[str, str]] = []
        self.checks: list[str] = []
        self.selects: list[str] = []
        self.sleeps: list[int] = []
        self.screenshots: list[str] = []
        self.evaluated: list[str] = []
        self.console_log: list[dict[str, Any]] = []
        self.event_collections = 0

    def discovery_payload(self) -> dict[str, Any]:
        payload = {"url": self.url, "forms": [], "links": [], "buttons": [], "inputs": []}
        payload.update(self.discovery)
        return payload

    async def navigate(self, url: str, wait_until: str = "domcontentloaded", timeout_ms: int = 30000) -> Any:
        if self.unreachable:
            raise NavigationError(f"Could not navigate to {url}: net::ERR_NAME_NOT_RESOLVED")
        self.navigations.append(url)
        return self._response

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        if script == DISCOVERY_SCRIPT:
            return self.discovery_payload()
        if script == FORM_FIELDS_SCRIPT:
            return self.forms.get(arg["locator"])
        if script == BUTTON_RESOLVE_SCRIPT:
            return self._resolve_button(arg)
        result = self.scripts.get(script)
        if isinstance(result, Exception):
            raise result
        return result

    def _resolve_button(self, arg: dict[str, Any]) -> dict[str, Any] | None:
        for button in self.discovery_payload()["buttons"]:
            label = button.get("text") or button.get("ariaLabel") or ""
            if (arg.get("label") and label == arg["label"]) or button["locator"] == arg.get("locator"):
                return {"locator": button["locator"], "disabled": button["locator"] in self.disabled_selectors}
        return None

    async def click(self, selector: str) -> None:
        if selector in self.failing_selectors:
            raise ElementNotInteractableError(f"Element {selector} is not interactable")
        self.clicks.append(selector)

    async def fill(self, selector: str, value: str) -> None:
        if selector in self.failing_selectors:
            raise ElementNotInteractableError(f"Element {selector} is not interactable")
        self.fills.append((selector, value))

    async def check(self, selector: str) -> None:
        self.checks.append(selector)

    async def select_first_option(self, selector: str) -> bool:
        self.selects.append(selector)
        return True

    async def is_enabled(self, selector: str) -> bool:
        return selector not in self.disabled_selectors

    async def wait_for_network_idle(self, timeout_ms: int = 5000, idle_time_ms: int = 500) -> bool:
        return True

    async def current_url(self) -> str:
        return self.url

    def response_info(self) -> NavigationResponse | None:
        return self._response

    async def get_cookies(self) -> list[dict[str, Any]]:
        return list(self.cookies)

    async def screenshot(self, path: str) -> str:
        self.screenshots.append(path)
        return path

    async def sleep(self, ms: int) -> None:
        self.sleeps.append(ms)

    async def collect_events(self) -> int:
        self.event_collections += 1
        return self.events.record_console(self.console_log)


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    """Factory for in-memory page sessions."""
    return FakeSession


@pytest.fixture
def secure_headers() -> dict[str, str]:
    """A full set of recommended security headers."""
    return {
        "strict-transport-security": "max-age=31536000; includeSubDomains",
        "content-security-policy": "default-src 'self'",
        "x-content-type-options": "nosniff",
        "x-frame-options": "DENY",
        "x-xss-protection": "1; mode=block",
        "referrer-policy": "strict-origin-when-cross-origin",
        "permissions-policy": "camera=()",
    }


@pytest.fixture
def mock_browser() -> MagicMock:
    """Create a mock OwlBrowser instance (SDK v2)."""
    browser = MagicMock()

    # SDK v2: all methods are async and take context_id
    browser.create_context = AsyncMock(return_value={"context_id": "test-ctx-001"})
    browser.close_context = AsyncMock(return_value=None)
    browser.navigate = AsyncMock(
        return_value={"url": "https://example.com/", "status": 200, "headers": {"X-Frame-Options": "DENY"}}
    )
    browser.evaluate = AsyncMock(return_value=None)
    browser.click = AsyncMock(return_value=None)
    browser.type = AsyncMock(return_value=None)
    browser.clear_input = AsyncMock(return_value=None)
    browser.is_checked = AsyncMock(return_value={"checked": False})
    browser.is_enabled = AsyncMock(return_value={"enabled": True})
    browser.wait_for_network_idle = AsyncMock(return_value=None)
    browser.get_page_info = AsyncMock(return_value={"url": "https://example.com/"})
    browser.get_cookies = AsyncMock(return_value=[])
    browser.get_console_log = AsyncMock(return_value={"entries": []})
    browser.get_network_log = AsyncMock(return_value={"entries": []})
    browser.screenshot = AsyncMock(return_value={"path": "page.png"})

    return browser
