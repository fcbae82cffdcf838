"""Sequential scanning of tracked pages."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, fields
from typing import Sequence

from models import ChangeCategory, Page, PageState
from models.page import now_ms
from services.classifier import classify
from services.fetcher import FetchError, Fetcher
from services.state import Slot, apply_scan
from services.storage import PageRepository, StorageError
from services.writer import BackgroundWriter

logger = logging.getLogger(__name__)


def _refresh(page: Page, current: Page) -> None:
    """Copy the stored record into ``page``, keeping a newer autoscan stamp."""
    stamp = page.last_autoscan_time
    for item in fields(Page):
        setattr(page, item.name, getattr(current, item.name))
    if stamp is not None and (page.last_autoscan_time is None or stamp > page.last_autoscan_time):
        page.last_autoscan_time = stamp


@dataclass(slots=True)
class ScanOutcome:
    """Result of scanning one page."""

    page: Page
    previous_state: PageState
    previously_failed: bool
    category: ChangeCategory | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def became_changed(self) -> bool:
        return (
            self.succeeded
            and self.previous_state is PageState.NO_CHANGE
            and self.page.state is PageState.CHANGED
        )

    @property
    def started_failing(self) -> bool:
        return not self.succeeded and not self.previously_failed


@dataclass(slots=True)
class ScanReport:
    outcomes: list[ScanOutcome] = field(default_factory=list)

    @property
    def newly_changed(self) -> list[Page]:
        return [outcome.page for outcome in self.outcomes if outcome.became_changed]

    @property
    def newly_failed(self) -> list[ScanOutcome]:
        return [outcome for outcome in self.outcomes if outcome.started_failing]

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.succeeded)

    @property
    def succeeded(self) -> int:
        return len(self.outcomes) - self.failed


class Scanner:
    """Fetches, classifies and updates pages strictly one after another."""

    def __init__(
        self,
        pages: PageRepository,
        fetcher: Fetcher | None = None,
        writer: BackgroundWriter | None = None,
    ) -> None:
        self.pages = pages
        self.fetcher = fetcher or Fetcher()
        self.writer = writer or BackgroundWriter(pages)
        # Manual and scheduled scans share one queue of pages.
        self._scan_lock = asyncio.Lock()

    async def scan_all(self, pages: Sequence[Page]) -> ScanReport:
        """Scan pages in order. Returns once every page has been attempted.

        Persistence is queued on the background writer and may still be
        running when this coroutine returns.
        """
        async with self._scan_lock:
            return await self._scan_sequentially(pages)

    async def _scan_sequentially(self, pages: Sequence[Page]) -> ScanReport:
        logger.info("Starting scan of %d pages…", len(pages))
        report = ScanReport()

        for page in pages:
            outcome = ScanOutcome(
                page=page,
                previous_state=page.state,
                previously_failed=page.has_error,
            )
            try:
                still_tracked = await self._scan_page(page, outcome)
            except asyncio.CancelledError:
                logger.info("Scan cancelled while processing %s", page.url)
                raise
            except Exception as exc:
                logger.exception("Unexpected error scanning %s", page.url)
                self._record_failure(page, outcome, f"Unexpected error: {exc}")
                still_tracked = True
            if still_tracked:
                report.outcomes.append(outcome)

        logger.info(
            "Scan completed: %d total, %d successful, %d failed",
            len(report.outcomes), report.succeeded, report.failed,
        )
        return report

    def _load_current(self, page_id: str) -> tuple[Page | None, str]:
        page = self.pages.find(page_id)
        if page is None:
            return None, ""
        return page, self.pages.snapshots.load_html(page_id, Slot.NEW)

    async def _scan_page(self, page: Page, outcome: ScanOutcome) -> bool:
        """Scan one page. Returns False if the page was removed meanwhile."""
        logger.info("Scanning %s", page.url)
        try:
            scanned_html = await self.fetcher.fetch(page)
            if self.writer.has_pending(page.id):
                # Earlier writes for this page must land before reading it back.
                await self.writer.drain()
            loop = asyncio.get_running_loop()
            current, prev_html = await loop.run_in_executor(None, self._load_current, page.id)
        except (FetchError, StorageError) as exc:
            logger.warning('Could not scan "%s": %s', page.title, exc)
            self._record_failure(page, outcome, str(exc))
            return True

        if current is None:
            logger.info('Page "%s" was removed during the scan, skipping it', page.title)
            return False

        # The record may have been acknowledged or edited while this batch ran.
        _refresh(page, current)
        outcome.previous_state = page.state
        outcome.previously_failed = page.has_error

        category = classify(prev_html, scanned_html, page.change_threshold, page.ignore_numbers)
        writes = apply_scan(page, category, prev_html, scanned_html)
        outcome.category = category

        self.writer.save_snapshots(page.id, writes)
        self.writer.save_scan_state(page, outcome.previous_state)
        logger.info(
            "Page %s classified as %s, state %s",
            page.id, category.value, page.state.value,
        )
        return True

    def _record_failure(self, page: Page, outcome: ScanOutcome, message: str) -> None:
        page.set_error(message)
        outcome.error = page.error_message
        self.writer.save_scan_state(page, page.state)

    async def _load_pages(self) -> list[Page]:
        # Stored records must reflect every earlier scan before reloading them.
        await self.writer.drain()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.pages.list_pages)

    async def autoscan(self, current_ms: int | None = None) -> ScanReport:
        """Scan every stored page whose scan rate says it is due."""
        current = current_ms if current_ms is not None else now_ms()
        async with self._scan_lock:
            try:
                pages = await self._load_pages()
            except StorageError:
                logger.exception("Could not list pages for autoscan")
                return ScanReport()

            due = [page for page in pages if page.is_due(current)]
            if not due:
                logger.debug("No pages due for autoscan")
                return ScanReport()

            for page in due:
                page.last_autoscan_time = current
            return await self._scan_sequentially(due)

    async def rescan(self, page_ids: Sequence[str] | None = None) -> ScanReport:
        """Scan stored pages right away, either all of them or the given IDs."""
        async with self._scan_lock:
            pages = await self._load_pages()
            if page_ids is not None:
                wanted = set(page_ids)
                pages = [page for page in pages if page.id in wanted]
            return await self._scan_sequentially(pages)

    async def close(self) -> None:
        await self.writer.close()
        await self.fetcher.close()


__all__ = ["ScanOutcome", "ScanReport", "Scanner"]
