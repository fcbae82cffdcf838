"""Detached persistence for scan results.

Writes are queued and executed one at a time by a background task, so a
scan can move on to the next page without waiting for storage. Failures
are logged and never reach the code that queued the write.
"""
from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from functools import partial
from typing import Callable

from models import Page, PageState
from services.state import SnapshotWrite
from services.storage import PageRepository

logger = logging.getLogger(__name__)


class BackgroundWriter:
    def __init__(self, pages: PageRepository) -> None:
        self.pages = pages
        self._queue: asyncio.Queue[tuple[str, str, Callable[[], None]]] | None = None
        self._worker: asyncio.Task | None = None
        self._pending: dict[str, int] = {}

    def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._queue = asyncio.Queue()
        self._pending.clear()
        self._worker = asyncio.create_task(self._run(), name="background-writer")

    def submit(self, page_id: str, description: str, job: Callable[[], None]) -> None:
        self.start()
        assert self._queue is not None
        self._pending[page_id] = self._pending.get(page_id, 0) + 1
        self._queue.put_nowait((page_id, description, job))

    def has_pending(self, page_id: str) -> bool:
        return self._pending.get(page_id, 0) > 0

    def save_scan_state(self, page: Page, seen_state: PageState) -> None:
        """Queue a merge of the scan result into the stored page record."""
        # Copy so later in-memory edits do not leak into this write.
        snapshot = dataclasses.replace(page)
        self.submit(
            page.id,
            f"scan state of page {page.id}",
            partial(self.pages.save_scan_state, snapshot, seen_state),
        )

    def save_snapshots(self, page_id: str, writes: list[SnapshotWrite]) -> None:
        for write in writes:
            self.submit(
                page_id,
                f"{write.slot.value} snapshot of page {page_id}",
                partial(self.pages.save_snapshot, page_id, write.slot, write.html),
            )

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue
        loop = asyncio.get_running_loop()
        while True:
            page_id, description, job = await queue.get()
            try:
                await loop.run_in_executor(None, job)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background write failed: %s", description)
            finally:
                remaining = self._pending.get(page_id, 1) - 1
                if remaining > 0:
                    self._pending[page_id] = remaining
                else:
                    self._pending.pop(page_id, None)
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued write has been attempted."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    async def close(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        self._queue = None


__all__ = ["BackgroundWriter"]
