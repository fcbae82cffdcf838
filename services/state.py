"""Page state transitions and the snapshot writes coupled to them."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from models import ChangeCategory, Page, PageState
from models.page import now_ms


class Slot(str, Enum):
    """Named snapshot slots kept for every page."""

    OLD = "old"
    NEW = "new"


@dataclass(slots=True, frozen=True)
class SnapshotWrite:
    slot: Slot
    html: str


def next_state(current: PageState, category: ChangeCategory) -> PageState:
    """Scan results can move a page into CHANGED but never out of it."""
    if current is PageState.CHANGED or category is ChangeCategory.MAJOR_CHANGE:
        return PageState.CHANGED
    return PageState.NO_CHANGE


def snapshot_writes(
    current: PageState,
    category: ChangeCategory,
    prev_html: str,
    scanned_html: str,
) -> list[SnapshotWrite]:
    """Return the ordered snapshot writes for a scan result.

    The NEW slot always receives the latest fetch. The OLD slot captures
    the previous NEW snapshot only when a major change is first detected,
    so an unacknowledged change keeps its original baseline.
    """
    writes: list[SnapshotWrite] = []
    if category is ChangeCategory.MAJOR_CHANGE and current is not PageState.CHANGED:
        writes.append(SnapshotWrite(Slot.OLD, prev_html))
    writes.append(SnapshotWrite(Slot.NEW, scanned_html))
    return writes


def apply_scan(
    page: Page,
    category: ChangeCategory,
    prev_html: str,
    scanned_html: str,
    timestamp: int | None = None,
) -> list[SnapshotWrite]:
    """Update ``page`` for a successful scan and return the snapshot writes."""
    timestamp = timestamp if timestamp is not None else now_ms()
    writes = snapshot_writes(page.state, category, prev_html, scanned_html)

    for write in writes:
        if write.slot is Slot.OLD:
            # The baseline is the content fetched at the previous NEW update.
            page.old_scan_time = page.new_scan_time
        else:
            page.new_scan_time = timestamp

    page.state = next_state(page.state, category)
    page.clear_error()
    return writes


__all__ = ["Slot", "SnapshotWrite", "apply_scan", "next_state", "snapshot_writes"]
