"""Bounded, session-owned buffer of console and network events.

Console errors and failed requests observed while a page is exercised are
pulled from the browser logs into this buffer and flushed once, at the end
of the observation window, into the audit result that reports them.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class EventType(StrEnum):
    """Type of buffered page event."""

    CONSOLE_ERROR = "console_error"
    """A console message at error level."""

    NETWORK_ERROR = "network_error"
    """A request that failed or returned an error status."""


@dataclass
class PageEvent:
    """A single buffered console or network event."""

    event_type: EventType
    """Kind of event."""

    message: str
    """Console text or failure reason."""

    url: str | None = None
    """Request URL for network events."""

    status: int | None = None
    """HTTP status for network events, if any."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    """When the event was buffered."""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


class EventBuffer:
    """
    Fixed-capacity event buffer owned by one page session.

    Oldest events are dropped once capacity is reached; the number of
    dropped events is kept so reports can say the log was truncated.
    """

    DEFAULT_CAPACITY = 200

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._events: deque[PageEvent] = deque(maxlen=capacity)
        self._seen: set[tuple[str, str, str | None]] = set()
        self._dropped = 0
        self._log = logger.bind(component="event_buffer")

    @property
    def capacity(self) -> int:
        return self._events.maxlen or 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: PageEvent) -> bool:
        """Buffer an event unless an identical one is still buffered."""
        key = _event_key(event)
        if key in self._seen:
            return False
        if len(self._events) == self.capacity:
            self._seen.discard(_event_key(self._events[0]))
            self._dropped += 1
        self._seen.add(key)
        self._events.append(event)
        return True

    def record_console(self, entries: list[Any]) -> int:
        """Buffer error-level console entries from a driver console log."""
        added = 0
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            level = str(entry.get("type") or entry.get("level") or "").lower()
            if level != "error":
                continue
            text = str(entry.get("text") or entry.get("message") or "")
            if self.record(PageEvent(EventType.CONSOLE_ERROR, text)):
                added += 1
        return added

    def record_network(self, entries: list[Any]) -> int:
        """Buffer failed requests (network error or status >= 400) from a network log."""
        added = 0
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            status = entry.get("status")
            error = entry.get("error") or entry.get("error_text") or entry.get("failure")
            failed = bool(error) or (isinstance(status, int) and status >= 400)
            if not failed:
                continue
            message = str(error) if error else f"HTTP {status}"
            event = PageEvent(
                EventType.NETWORK_ERROR,
                message,
                url=str(entry.get("url", "")),
                status=status if isinstance(status, int) else None,
            )
            if self.record(event):
                added += 1
        return added

    def flush(self) -> list[PageEvent]:
        """Return buffered events and empty the buffer."""
        events = list(self._events)
        self._events.clear()
        self._seen.clear()
        self._log.debug("Event buffer flushed", events=len(events), dropped=self._dropped)
        self._dropped = 0
        return events


def _event_key(event: PageEvent) -> tuple[str, str, str | None]:
    return (event.event_type.value, event.message, event.url)
