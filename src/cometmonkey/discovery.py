"""
Element discovery for the interaction engine.

One discovery pass queries the live page once and classifies the visible
interactive elements into forms, links, buttons and inputs. Elements are
described by a re-resolvable locator key (a unique id selector, or a
structural ``nth-child`` path) rather than a live handle, because the DOM
may mutate between discovery and interaction.

Key properties:
- Only elements with a layout box that are not display:none/visibility:hidden
- No side effects on the page
- A query failure is fatal and propagates as DiscoveryError
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from cometmonkey.exceptions import DiscoveryError

if TYPE_CHECKING:
    from cometmonkey.session import PageSession

logger = structlog.get_logger(__name__)


# Shared JS helpers: visibility and locator-key construction.
DOM_HELPERS_JS: str = """
    const isVisible = (el) => {
        if (!el || !el.isConnected) return false;
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        return el.getClientRects().length > 0;
    };

    const uniqueId = (el) => {
        if (!el.id) return null;
        const selector = '#' + CSS.escape(el.id);
        return document.querySelectorAll(selector).length === 1 ? selector : null;
    };

    const locatorFor = (el) => {
        const own = uniqueId(el);
        if (own) return own;
        const parts = [];
        let current = el;
        while (current && current.nodeType === 1 && current !== document.documentElement) {
            if (current !== el) {
                const anchor = uniqueId(current);
                if (anchor) {
                    parts.unshift(anchor);
                    return parts.join(' > ');
                }
            }
            const parent = current.parentElement;
            const index = parent ? Array.prototype.indexOf.call(parent.children, current) + 1 : 1;
            parts.unshift(current.tagName.toLowerCase() + ':nth-child(' + index + ')');
            current = parent;
        }
        parts.unshift('html');
        return parts.join(' > ');
    };

    const visibleText = (el) => (el.innerText || el.textContent || '').trim().replace(/\\s+/g, ' ');
"""

BUTTON_SELECTOR = 'button, [role="button"], input[type="button"], input[type="submit"]'
FIELD_SELECTOR = "input, textarea, select"

DISCOVERY_SCRIPT: str = (
    """
(() => {
"""
    + DOM_HELPERS_JS
    + """
    const result = { url: window.location.href, forms: [], links: [], buttons: [], inputs: [] };

    document.querySelectorAll('form').forEach((form) => {
        if (!isVisible(form)) return;
        result.forms.push({
            locator: locatorFor(form),
            id: form.id || null,
            fields: form.querySelectorAll('"""
    + FIELD_SELECTOR
    + """').length,
            method: (form.getAttribute('method') || 'get').toLowerCase(),
            action: form.action || ''
        });
    });

    document.querySelectorAll('a').forEach((link) => {
        if (!isVisible(link)) return;
        result.links.push({
            locator: locatorFor(link),
            href: link.href || '',
            rawHref: link.getAttribute('href') || '',
            text: visibleText(link).substring(0, 50)
        });
    });

    document.querySelectorAll('"""
    + BUTTON_SELECTOR
    + """').forEach((btn) => {
        if (!isVisible(btn)) return;
        result.buttons.push({
            locator: locatorFor(btn),
            text: (visibleText(btn) || btn.value || '').substring(0, 50),
            ariaLabel: btn.getAttribute('aria-label'),
            inForm: !!btn.closest('form')
        });
    });

    document.querySelectorAll('"""
    + FIELD_SELECTOR
    + """').forEach((input) => {
        if (!isVisible(input)) return;
        result.inputs.push({
            locator: locatorFor(input),
            inputType: (input.type || input.tagName).toLowerCase(),
            name: input.name || '',
            placeholder: input.placeholder || ''
        });
    });

    return result;
})
"""
)


class ElementKind(StrEnum):
    """Kind of discovered interactive element."""

    FORM = "form"
    LINK = "link"
    BUTTON = "button"
    INPUT = "input"


@dataclass(frozen=True)
class DiscoveredElement:
    """A classified, located candidate for interaction."""

    kind: ElementKind
    """Element kind."""

    locator_key: str
    """Re-resolvable selector for the element."""

    page_url: str
    """URL of the page the element was discovered on."""

    @property
    def identity(self) -> str:
        """Key used to track whether this element was already acted upon."""
        return f"{self.kind.value}:{self.page_url}|{self.locator_key}"


@dataclass(frozen=True)
class FormElement(DiscoveredElement):
    """A visible form."""

    field_count: int = 0
    method: str = "get"
    action: str = ""
    form_id: str | None = None


@dataclass(frozen=True)
class LinkElement(DiscoveredElement):
    """A visible anchor."""

    href: str = ""
    """Resolved absolute URL."""

    raw_href: str = ""
    """Attribute value as authored."""

    text: str = ""


@dataclass(frozen=True)
class ButtonElement(DiscoveredElement):
    """A visible button or button-like element."""

    text: str = ""
    aria_label: str | None = None
    in_form: bool = False

    @property
    def label(self) -> str:
        return self.text or self.aria_label or ""


@dataclass(frozen=True)
class InputElement(DiscoveredElement):
    """A visible form field."""

    input_type: str = "text"
    name: str = ""
    placeholder: str = ""


@dataclass
class DiscoveryResult:
    """Discovered elements partitioned by kind, in document order."""

    url: str
    forms: list[FormElement] = field(default_factory=list)
    links: list[LinkElement] = field(default_factory=list)
    buttons: list[ButtonElement] = field(default_factory=list)
    inputs: list[InputElement] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.forms) + len(self.links) + len(self.buttons) + len(self.inputs)

    def of_kind(self, kind: ElementKind) -> list[DiscoveredElement]:
        match kind:
            case ElementKind.FORM:
                return list(self.forms)
            case ElementKind.LINK:
                return list(self.links)
            case ElementKind.BUTTON:
                return list(self.buttons)
            case ElementKind.INPUT:
                return list(self.inputs)


class ElementDiscovery:
    """
    Queries page state once per pass and classifies interactive elements.

    The pass is a single read-only script evaluation; classification of the
    raw payload happens in Python so it can be tested without a browser.
    """

    def __init__(self) -> None:
        self._log = logger.bind(component="element_discovery")

    async def discover(self, session: PageSession) -> DiscoveryResult:
        """
        Discover visible interactive elements on the current page.

        Args:
            session: Page session to query

        Returns:
            Partitioned discovery result

        Raises:
            DiscoveryError: If the page cannot be queried
        """
        try:
            raw = await session.evaluate(DISCOVERY_SCRIPT)
        except Exception as e:
            self._log.error("discovery_failed", error=str(e))
            raise DiscoveryError(f"Could not query page elements: {e}") from e

        if not isinstance(raw, dict):
            raise DiscoveryError(f"Unexpected discovery payload: {type(raw).__name__}")

        result = self.classify(raw)
        self._log.info(
            "elements_discovered",
            url=result.url,
            forms=len(result.forms),
            links=len(result.links),
            buttons=len(result.buttons),
            inputs=len(result.inputs),
        )
        return result

    def classify(self, raw: dict[str, Any]) -> DiscoveryResult:
        """Turn a raw discovery payload into typed elements."""
        url = str(raw.get("url") or "")
        result = DiscoveryResult(url=url)

        for item in _items(raw, "forms"):
            result.forms.append(
                FormElement(
                    kind=ElementKind.FORM,
                    locator_key=item["locator"],
                    page_url=url,
                    field_count=int(item.get("fields") or 0),
                    method=str(item.get("method") or "get").lower(),
                    action=str(item.get("action") or ""),
                    form_id=item.get("id") or None,
                )
            )

        for item in _items(raw, "links"):
            result.links.append(
                LinkElement(
                    kind=ElementKind.LINK,
                    locator_key=item["locator"],
                    page_url=url,
                    href=str(item.get("href") or ""),
                    raw_href=str(item.get("rawHref") or ""),
                    text=str(item.get("text") or "").strip(),
                )
            )

        for item in _items(raw, "buttons"):
            result.buttons.append(
                ButtonElement(
                    kind=ElementKind.BUTTON,
                    locator_key=item["locator"],
                    page_url=url,
                    text=str(item.get("text") or "").strip(),
                    aria_label=item.get("ariaLabel") or None,
                    in_form=bool(item.get("inForm", False)),
                )
            )

        for item in _items(raw, "inputs"):
            result.inputs.append(
                InputElement(
                    kind=ElementKind.INPUT,
                    locator_key=item["locator"],
                    page_url=url,
                    input_type=str(item.get("inputType") or "text").lower(),
                    name=str(item.get("name") or ""),
                    placeholder=str(item.get("placeholder") or ""),
                )
            )

        return result


def _items(raw: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """Entries of one kind that carry a locator."""
    items = raw.get(key) or []
    return [item for item in items if isinstance(item, dict) and item.get("locator")]


async def discover_elements(session: PageSession) -> DiscoveryResult:
    """Run one discovery pass with a default discovery instance."""
    return await ElementDiscovery().discover(session)
