"""
Exception types for the interaction and audit engine.

Per-element and per-check failures are recovered where they happen;
only navigation and discovery failures escape a page run.
"""

from __future__ import annotations


class CometMonkeyError(Exception):
    """Base class for all engine errors."""

    pass


class NavigationError(CometMonkeyError):
    """Raised when the target page cannot be reached."""

    pass


class DiscoveryError(CometMonkeyError):
    """Raised when the live page cannot be queried for elements."""

    pass


class ElementNotFoundError(CometMonkeyError):
    """Raised when a locator no longer resolves in the live DOM."""

    pass


class ElementNotInteractableError(CometMonkeyError):
    """Raised when an element is found but cannot be acted upon."""

    pass


class AuditStrategyError(CometMonkeyError):
    """Raised when the primary strategy of an audit is unavailable."""

    pass
