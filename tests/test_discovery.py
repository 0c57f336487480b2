"""
Tests for element discovery and classification.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from cometmonkey.discovery import (
    DISCOVERY_SCRIPT,
    ButtonElement,
    ElementDiscovery,
    ElementKind,
    FormElement,
    LinkElement,
    discover_elements,
)
from cometmonkey.exceptions import DiscoveryError

RAW_PAGE: dict[str, Any] = {
    "url": "https://example.com/",
    "forms": [
        {"locator": "#signup", "id": "signup", "fields": 3, "method": "POST", "action": "/register"},
        {"id": "broken"},
    ],
    "links": [
        {"locator": "#nav-about", "href": "https://example.com/about", "rawHref": "/about", "text": " About "},
    ],
    "buttons": [
        {"locator": "#menu", "text": "", "ariaLabel": "Open menu", "inForm": False},
        {"locator": "#signup-submit", "text": "Sign up", "inForm": True},
    ],
    "inputs": [
        {"locator": "#email", "inputType": "EMAIL", "name": "email", "placeholder": "you@example.com"},
    ],
}


class TestElementDiscovery:
    """Test ElementDiscovery.classify and discover."""

    def test_classify_partitions_by_kind(self) -> None:
        result = ElementDiscovery().classify(RAW_PAGE)

        assert result.url == "https://example.com/"
        assert len(result.forms) == 1
        assert len(result.links) == 1
        assert len(result.buttons) == 2
        assert len(result.inputs) == 1
        assert result.total == 5

    def test_classify_normalizes_fields(self) -> None:
        result = ElementDiscovery().classify(RAW_PAGE)

        form = result.forms[0]
        assert isinstance(form, FormElement)
        assert form.method == "post"
        assert form.field_count == 3
        assert form.form_id == "signup"

        link = result.links[0]
        assert isinstance(link, LinkElement)
        assert link.text == "About"
        assert link.raw_href == "/about"

        menu = result.buttons[0]
        assert isinstance(menu, ButtonElement)
        assert menu.label == "Open menu"
        assert result.buttons[1].in_form

        assert result.inputs[0].input_type == "email"

    def test_identity_includes_kind_page_and_locator(self) -> None:
        result = ElementDiscovery().classify(RAW_PAGE)
        assert result.forms[0].identity == "form:https://example.com/|#signup"
        assert result.buttons[0].identity != result.buttons[1].identity

    def test_of_kind(self) -> None:
        result = ElementDiscovery().classify(RAW_PAGE)
        assert result.of_kind(ElementKind.BUTTON) == result.buttons
        assert result.of_kind(ElementKind.LINK) == result.links

    def test_empty_page(self) -> None:
        result = ElementDiscovery().classify({"url": "about:blank"})
        assert result.total == 0

    @pytest.mark.asyncio
    async def test_discover_uses_single_script_pass(self, make_session: Callable[..., Any]) -> None:
        session = make_session(discovery={"links": RAW_PAGE["links"]})

        result = await discover_elements(session)

        assert session.evaluated == [DISCOVERY_SCRIPT]
        assert [link.href for link in result.links] == ["https://example.com/about"]

    @pytest.mark.asyncio
    async def test_discover_failure_raises(self, make_session: Callable[..., Any]) -> None:
        session = make_session(scripts={})

        async def broken(script: str, arg: Any = None) -> Any:
            raise RuntimeError("Execution context was destroyed")

        session.evaluate = broken

        with pytest.raises(DiscoveryError, match="Execution context was destroyed"):
            await ElementDiscovery().discover(session)

    @pytest.mark.asyncio
    async def test_discover_rejects_unexpected_payload(self, make_session: Callable[..., Any]) -> None:
        session = make_session()

        async def empty(script: str, arg: Any = None) -> Any:
            return None

        session.evaluate = empty

        with pytest.raises(DiscoveryError):
            await ElementDiscovery().discover(session)
