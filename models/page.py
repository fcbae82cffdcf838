"""Data model for monitored pages and their persisted record schema."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

PAGE_KEY_PATTERN = re.compile(r"^page:(.*)$")


def now_ms() -> int:
    """Current time in milliseconds since the Unix epoch."""
    return int(time.time() * 1000)


def page_key(page_id: str) -> str:
    return f"page:{page_id}"


def id_from_key(key: str) -> Optional[str]:
    """Return the page ID encoded in a storage key, or None for other keys."""
    match = PAGE_KEY_PATTERN.match(key)
    if match is None:
        return None
    return match.group(1)


def is_page_key(key: str) -> bool:
    return id_from_key(key) is not None


class PageState(str, Enum):
    """Scan state of a page. Errors are tracked separately in ``Page.error``."""

    NO_CHANGE = "no_change"
    CHANGED = "changed"


@dataclass(slots=True, frozen=True)
class ErrorInfo:
    """Details of the last failed scan."""

    message: str
    occurred_at: int | None = None


@dataclass(slots=True)
class Page:
    """Represents a web page tracked for content changes."""

    id: str
    title: str = "New Page"
    url: str | None = None
    scan_rate_minutes: int = 24 * 60
    change_threshold: int = 100
    ignore_numbers: bool = False
    encoding: str | None = None
    highlight_changes: bool = True
    highlight_colour: str = "#ffff66"
    mark_changes: bool = False
    do_post: bool = False
    post_params: str | None = None
    state: PageState = PageState.NO_CHANGE
    error: ErrorInfo | None = field(default=None)
    last_autoscan_time: int | None = None
    old_scan_time: int | None = None
    new_scan_time: int | None = None

    @property
    def key(self) -> str:
        return page_key(self.id)

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str:
        return self.error.message if self.error else ""

    def set_error(self, message: str, occurred_at: int | None = None) -> None:
        self.error = ErrorInfo(message=message, occurred_at=occurred_at or now_ms())

    def clear_error(self) -> None:
        self.error = None

    def acknowledge(self) -> None:
        """Mark a detected change as seen by the user."""
        self.state = PageState.NO_CHANGE

    def is_due(self, current_ms: int | None = None) -> bool:
        """Check whether the page should be picked up by the autoscan."""
        if self.scan_rate_minutes <= 0:
            return False
        if self.last_autoscan_time is None:
            return True
        current = current_ms if current_ms is not None else now_ms()
        return current - self.last_autoscan_time >= self.scan_rate_minutes * 60 * 1000

    def to_record(self) -> dict[str, Any]:
        """Convert the page into the object stored under its key."""
        return {
            "title": self.title,
            "url": self.url,
            "scanRateMinutes": self.scan_rate_minutes,
            "changeThreshold": self.change_threshold,
            "ignoreNumbers": self.ignore_numbers,
            "encoding": self.encoding,
            "highlightChanges": self.highlight_changes,
            "highlightColour": self.highlight_colour,
            "markChanges": self.mark_changes,
            "doPost": self.do_post,
            "postParams": self.post_params,
            "state": self.state.value,
            "error": self.has_error,
            "errorMessage": self.error_message,
            "errorTime": self.error.occurred_at if self.error else None,
            "lastAutoscanTime": self.last_autoscan_time,
            "oldScanTime": self.old_scan_time,
            "newScanTime": self.new_scan_time,
        }

    @classmethod
    def from_record(cls, page_id: str, data: dict[str, Any] | None) -> "Page":
        """Build a page from a stored record, filling gaps with defaults."""
        data = data or {}
        page = cls(id=page_id)

        page.title = data.get("title", page.title)
        page.url = data.get("url", page.url)
        page.scan_rate_minutes = int(data.get("scanRateMinutes", page.scan_rate_minutes))
        page.change_threshold = int(data.get("changeThreshold", page.change_threshold))
        page.ignore_numbers = bool(data.get("ignoreNumbers", page.ignore_numbers))
        page.encoding = data.get("encoding", page.encoding)
        page.highlight_changes = bool(data.get("highlightChanges", page.highlight_changes))
        page.highlight_colour = data.get("highlightColour", page.highlight_colour)
        page.mark_changes = bool(data.get("markChanges", page.mark_changes))
        page.do_post = bool(data.get("doPost", page.do_post))
        page.post_params = data.get("postParams", page.post_params)
        page.last_autoscan_time = data.get("lastAutoscanTime")
        page.old_scan_time = data.get("oldScanTime")
        page.new_scan_time = data.get("newScanTime")

        raw_state = data.get("state", PageState.NO_CHANGE.value)
        try:
            page.state = PageState(raw_state)
        except ValueError:
            # Older records stored errors as a third state value.
            page.state = PageState.NO_CHANGE
            page.error = ErrorInfo(
                message=data.get("errorMessage") or f"Unknown state: {raw_state}",
                occurred_at=data.get("errorTime"),
            )

        if data.get("error") and page.error is None:
            page.error = ErrorInfo(
                message=data.get("errorMessage") or "",
                occurred_at=data.get("errorTime"),
            )
        return page
