"""
Page session over one owl-browser context.

The session is the only object that talks to the automation driver. It
maps the engine's needs (navigate, inspect, click, fill, wait, read
headers and cookies, screenshot) onto owl-browser SDK v2 calls, and owns
the page's bounded event buffer. Every wait on the environment carries an
explicit timeout and degrades to "proceed anyway".
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from cometmonkey.events import EventBuffer
from cometmonkey.exceptions import NavigationError

if TYPE_CHECKING:
    from owl_browser import OwlBrowser

logger = structlog.get_logger(__name__)

SELECT_FIRST_OPTION_SCRIPT = """
(arg) => {
    const el = document.querySelector(arg.selector);
    if (!el || !el.options || el.options.length === 0) return false;
    const options = Array.from(el.options);
    const option = options.find((o) => o.value && !o.disabled) || options[0];
    el.value = option.value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""


def _extract_sdk_bool(result: Any, key: str = "success", default: bool = False) -> bool:
    """Extract a boolean from an SDK response.

    The SDK returns either a bare bool or a dict carrying the flag under a
    key such as ``success``, ``enabled`` or ``checked``.
    """
    if isinstance(result, bool):
        return result
    if isinstance(result, dict):
        if key in result:
            return bool(result[key])
        return bool(result.get("success", default))
    return default


@dataclass
class NavigationResponse:
    """Status and headers of the current main-frame navigation."""

    url: str
    status: int | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_sdk(cls, url: str, result: Any) -> "NavigationResponse | None":
        """Build from a navigate() result, if the SDK reported one."""
        if not isinstance(result, dict):
            return None
        raw_headers = result.get("headers") or {}
        headers = {str(k).lower(): str(v) for k, v in raw_headers.items()} if isinstance(raw_headers, dict) else {}
        status = result.get("status")
        return cls(
            url=str(result.get("url") or url),
            status=status if isinstance(status, int) else None,
            headers=headers,
        )


class PageSession:
    """
    One page's exclusive handle on the browser.

    A session must never be shared across concurrent page runs; it holds
    the page's event buffer and the last navigation response.
    """

    def __init__(
        self,
        browser: OwlBrowser,
        context_id: str,
        event_capacity: int = EventBuffer.DEFAULT_CAPACITY,
        timeout_ms: int = 30000,
    ) -> None:
        """
        Initialize the session.

        Args:
            browser: owl-browser SDK instance
            context_id: Browser context owned by this session
            event_capacity: Maximum number of buffered console/network events
            timeout_ms: Ceiling on any single driver call that inspects or acts on the page
        """
        self._browser = browser
        self.context_id = context_id
        self.events = EventBuffer(event_capacity)
        self.timeout_ms = timeout_ms
        self._last_response: NavigationResponse | None = None
        self._log = logger.bind(component="page_session", context_id=context_id)

    async def navigate(
        self,
        url: str,
        wait_until: str = "domcontentloaded",
        timeout_ms: int = 30000,
    ) -> NavigationResponse | None:
        """
        Navigate to a URL.

        Raises:
            NavigationError: If the page cannot be reached
        """
        self._log.debug("navigating", url=url, wait_until=wait_until)
        try:
            result = await asyncio.wait_for(
                self._browser.navigate(
                    context_id=self.context_id,
                    url=url,
                    wait_until=wait_until,
                    timeout=timeout_ms,
                ),
                timeout=timeout_ms / 1000 + 5,
            )
        except Exception as e:
            raise NavigationError(f"Could not navigate to {url}: {e}") from e

        self._last_response = NavigationResponse.from_sdk(url, result)
        return self._last_response

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """
        Run a read-only inspection script against the live document.

        Args:
            script: JavaScript function expression, called with ``arg``
            arg: JSON-serializable argument

        Returns:
            The SDK's evaluated value
        """
        expression = f"({script})({json.dumps(arg)})"
        return await self._bounded(
            "evaluate", self._browser.evaluate(context_id=self.context_id, expression=expression)
        )

    async def click(self, selector: str) -> None:
        await self._bounded("click", self._browser.click(context_id=self.context_id, selector=selector))

    async def fill(self, selector: str, value: str) -> None:
        """Replace a field's value."""
        await self._bounded(
            "clear_input", self._browser.clear_input(context_id=self.context_id, selector=selector)
        )
        await self._bounded(
            "type", self._browser.type(context_id=self.context_id, selector=selector, text=value)
        )

    async def check(self, selector: str) -> None:
        """Activate a checkbox or radio button if it is not already checked."""
        result = await self._bounded(
            "is_checked", self._browser.is_checked(context_id=self.context_id, selector=selector)
        )
        if not _extract_sdk_bool(result, key="checked"):
            await self.click(selector)

    async def select_first_option(self, selector: str) -> bool:
        """Choose the first selectable option of a ``<select>``."""
        result = await self.evaluate(SELECT_FIRST_OPTION_SCRIPT, {"selector": selector})
        return bool(result)

    async def is_enabled(self, selector: str) -> bool:
        result = await self._bounded(
            "is_enabled", self._browser.is_enabled(context_id=self.context_id, selector=selector)
        )
        return _extract_sdk_bool(result, key="enabled", default=True)

    async def _bounded(self, operation: str, call: Awaitable[Any]) -> Any:
        """Await a driver call, failing with TimeoutError past the session timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            self._log.warning("driver_call_timeout", operation=operation, timeout_ms=self.timeout_ms)
            raise TimeoutError(f"{operation} exceeded {self.timeout_ms} ms") from e

    async def wait_for_network_idle(self, timeout_ms: int = 5000, idle_time_ms: int = 500) -> bool:
        """
        Wait for network quiescence.

        Returns:
            True if the network went idle, False on timeout or error
        """
        try:
            await asyncio.wait_for(
                self._browser.wait_for_network_idle(
                    context_id=self.context_id,
                    idle_time=idle_time_ms,
                    timeout=timeout_ms,
                ),
                timeout=timeout_ms / 1000 + 1,
            )
            return True
        except Exception as e:
            self._log.debug("network_idle_timeout", timeout_ms=timeout_ms, error=str(e))
            return False

    async def current_url(self) -> str:
        page_info = await self._browser.get_page_info(context_id=self.context_id)
        if isinstance(page_info, dict):
            return str(page_info.get("url") or "")
        return ""

    def response_info(self) -> NavigationResponse | None:
        """Return status and headers of the last navigation, if the driver reported them."""
        return self._last_response

    async def get_cookies(self) -> list[dict[str, Any]]:
        """List cookies of this context as plain dicts."""
        raw = await self._browser.get_cookies(context_id=self.context_id)
        if isinstance(raw, dict):
            raw = raw.get("cookies", [])
        return [_convert_cookie(cookie) for cookie in raw or []]

    async def screenshot(self, path: str) -> str:
        await self._browser.screenshot(context_id=self.context_id, path=path)
        return path

    async def sleep(self, ms: int) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    async def collect_events(self) -> int:
        """Pull console and network logs from the driver into the event buffer."""
        added = 0
        try:
            console = await self._browser.get_console_log(context_id=self.context_id)
            if isinstance(console, dict):
                console = console.get("entries", [])
            added += self.events.record_console(list(console or []))
        except Exception as e:
            self._log.debug("console_log_unavailable", error=str(e))
        try:
            network = await self._browser.get_network_log(context_id=self.context_id)
            if isinstance(network, dict):
                network = network.get("entries", [])
            added += self.events.record_network(list(network or []))
        except Exception as e:
            self._log.debug("network_log_unavailable", error=str(e))
        return added


def _convert_cookie(cookie: Any) -> dict[str, Any]:
    """Convert an SDK cookie object or dict into a plain dict."""
    if isinstance(cookie, dict):
        return {
            "name": cookie.get("name", ""),
            "value": cookie.get("value", ""),
            "domain": cookie.get("domain", ""),
            "path": cookie.get("path", "/"),
            "secure": bool(cookie.get("secure", False)),
            "httponly": bool(cookie.get("httponly", cookie.get("http_only", cookie.get("httpOnly", False)))),
            "samesite": str(cookie.get("samesite", cookie.get("same_site", cookie.get("sameSite", "")))).lower(),
        }
    return {
        "name": getattr(cookie, "name", ""),
        "value": getattr(cookie, "value", ""),
        "domain": getattr(cookie, "domain", ""),
        "path": getattr(cookie, "path", "/"),
        "secure": bool(getattr(cookie, "secure", False)),
        "httponly": bool(getattr(cookie, "http_only", False)),
        "samesite": str(getattr(cookie, "same_site", "")).lower(),
    }
