"""
Tests for PageSession over a mocked owl-browser SDK.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from cometmonkey.exceptions import NavigationError
from cometmonkey.session import NavigationResponse, PageSession, _extract_sdk_bool


class TestExtractSdkBool:
    """Test SDK response flag extraction."""

    def test_bare_bool(self) -> None:
        assert _extract_sdk_bool(True)
        assert not _extract_sdk_bool(False)

    def test_keyed_dict(self) -> None:
        assert _extract_sdk_bool({"checked": True}, key="checked")
        assert not _extract_sdk_bool({"enabled": False}, key="enabled", default=True)

    def test_falls_back_to_success_then_default(self) -> None:
        assert _extract_sdk_bool({"success": True}, key="enabled")
        assert _extract_sdk_bool(None, default=True)


class TestNavigationResponse:
    """Test navigation response parsing."""

    def test_headers_lowercased(self) -> None:
        response = NavigationResponse.from_sdk(
            "https://example.com/",
            {"status": 200, "headers": {"Content-Security-Policy": "default-src 'self'"}},
        )
        assert response is not None
        assert response.status == 200
        assert response.headers == {"content-security-policy": "default-src 'self'"}
        assert response.url == "https://example.com/"

    def test_non_dict_result(self) -> None:
        assert NavigationResponse.from_sdk("https://example.com/", None) is None


class TestPageSession:
    """Test PageSession SDK call mapping."""

    @pytest.mark.asyncio
    async def test_navigate_records_response(self, mock_browser: MagicMock) -> None:
        session = PageSession(mock_browser, "test-ctx-001")

        response = await session.navigate("https://example.com/", timeout_ms=1000)

        mock_browser.navigate.assert_awaited_once()
        kwargs = mock_browser.navigate.call_args.kwargs
        assert kwargs["context_id"] == "test-ctx-001"
        assert kwargs["url"] == "https://example.com/"
        assert response is session.response_info()
        assert response is not None
        assert response.headers["x-frame-options"] == "DENY"

    @pytest.mark.asyncio
    async def test_navigate_failure_raises(self, mock_browser: MagicMock) -> None:
        mock_browser.navigate = AsyncMock(side_effect=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))
        session = PageSession(mock_browser, "test-ctx-001")

        with pytest.raises(NavigationError, match="ERR_NAME_NOT_RESOLVED"):
            await session.navigate("https://unreachable.invalid/", timeout_ms=1000)

    @pytest.mark.asyncio
    async def test_evaluate_calls_function_with_json_argument(self, mock_browser: MagicMock) -> None:
        session = PageSession(mock_browser, "test-ctx-001")

        await session.evaluate("(arg) => arg.limit", {"limit": 5})

        expression = mock_browser.evaluate.call_args.kwargs["expression"]
        assert expression == '((arg) => arg.limit)({"limit": 5})'

    @pytest.mark.asyncio
    async def test_fill_clears_then_types(self, mock_browser: MagicMock) -> None:
        session = PageSession(mock_browser, "test-ctx-001")

        await session.fill("#email", "test@example.com")

        mock_browser.clear_input.assert_awaited_once_with(context_id="test-ctx-001", selector="#email")
        mock_browser.type.assert_awaited_once_with(
            context_id="test-ctx-001", selector="#email", text="test@example.com"
        )

    @pytest.mark.asyncio
    async def test_check_clicks_only_unchecked(self, mock_browser: MagicMock) -> None:
        session = PageSession(mock_browser, "test-ctx-001")

        await session.check("#agree")
        mock_browser.click.assert_awaited_once_with(context_id="test-ctx-001", selector="#agree")

        mock_browser.click.reset_mock()
        mock_browser.is_checked = AsyncMock(return_value={"checked": True})
        await session.check("#agree")
        mock_browser.click.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wait_for_network_idle_degrades_on_error(self, mock_browser: MagicMock) -> None:
        mock_browser.wait_for_network_idle = AsyncMock(side_effect=TimeoutError("still busy"))
        session = PageSession(mock_browser, "test-ctx-001")

        assert await session.wait_for_network_idle(timeout_ms=100) is False

    @pytest.mark.asyncio
    async def test_cookies_converted_to_dicts(self, mock_browser: MagicMock) -> None:
        sdk_cookie = MagicMock()
        sdk_cookie.name = "sid"
        sdk_cookie.value = "abc"
        sdk_cookie.domain = "example.com"
        sdk_cookie.path = "/"
        sdk_cookie.secure = True
        sdk_cookie.http_only = True
        sdk_cookie.same_site = "Strict"
        mock_browser.get_cookies = AsyncMock(
            return_value=[sdk_cookie, {"name": "theme", "value": "dark", "sameSite": "Lax"}]
        )
        session = PageSession(mock_browser, "test-ctx-001")

        cookies = await session.get_cookies()

        assert cookies[0]["name"] == "sid"
        assert cookies[0]["httponly"] is True
        assert cookies[0]["samesite"] == "strict"
        assert cookies[1]["secure"] is False
        assert cookies[1]["samesite"] == "lax"

    @pytest.mark.asyncio
    async def test_collect_events_buffers_failures(self, mock_browser: MagicMock) -> None:
        mock_browser.get_console_log = AsyncMock(
            return_value={"entries": [{"type": "error", "text": "Uncaught ReferenceError"}]}
        )
        mock_browser.get_network_log = AsyncMock(side_effect=RuntimeError("not supported"))
        session = PageSession(mock_browser, "test-ctx-001")

        added = await session.collect_events()

        assert added == 1
        assert len(session.events) == 1

    @pytest.mark.asyncio
    async def test_current_url(self, mock_browser: MagicMock) -> None:
        session = PageSession(mock_browser, "test-ctx-001")
        assert await session.current_url() == "https://example.com/"

    @pytest.mark.asyncio
    async def test_stalled_driver_calls_bounded_by_timeout(self, mock_browser: MagicMock) -> None:
        async def stall(**kwargs: Any) -> None:
            await asyncio.sleep(5)

        mock_browser.evaluate = AsyncMock(side_effect=stall)
        mock_browser.click = AsyncMock(side_effect=stall)
        mock_browser.type = AsyncMock(side_effect=stall)
        session = PageSession(mock_browser, "test-ctx-001", timeout_ms=20)

        with pytest.raises(TimeoutError, match="evaluate exceeded 20 ms"):
            await session.evaluate("() => document.title")
        with pytest.raises(TimeoutError, match="click exceeded 20 ms"):
            await session.click("#go")
        with pytest.raises(TimeoutError, match="type exceeded 20 ms"):
            await session.fill("#email", "test@example.com")
