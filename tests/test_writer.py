from __future__ import annotations

import logging

import pytest

from models import PageState
from services.state import Slot, SnapshotWrite
from services.storage import StorageError
from services.writer import BackgroundWriter


@pytest.mark.asyncio
async def test_writer_persists_scan_state_and_snapshots(repository):
    writer = BackgroundWriter(repository)
    page = repository.add_page("https://example.com", "Example")
    page.state = PageState.CHANGED
    page.new_scan_time = 1_000

    writer.save_scan_state(page, PageState.NO_CHANGE)
    writer.save_snapshots(page.id, [SnapshotWrite(Slot.OLD, "before"), SnapshotWrite(Slot.NEW, "after")])
    assert writer.has_pending(page.id)

    await writer.drain()

    stored = repository.load(page.id)
    assert writer.has_pending(page.id) is False
    assert stored.title == "Example"
    assert stored.state is PageState.CHANGED
    assert stored.new_scan_time == 1_000
    assert repository.snapshots.load_html(page.id, Slot.OLD) == "before"
    assert repository.snapshots.load_html(page.id, Slot.NEW) == "after"
    await writer.close()


@pytest.mark.asyncio
async def test_writer_saves_page_as_it_was_when_queued(repository):
    writer = BackgroundWriter(repository)
    page = repository.add_page("https://example.com")
    page.new_scan_time = 1_000

    writer.save_scan_state(page, PageState.NO_CHANGE)
    page.new_scan_time = 2_000
    await writer.drain()

    assert repository.load(page.id).new_scan_time == 1_000
    await writer.close()


@pytest.mark.asyncio
async def test_writer_keeps_settings_and_acknowledgment_from_storage(repository):
    writer = BackgroundWriter(repository)
    page = repository.add_page("https://example.com", change_threshold=10)
    scanned = repository.get_page(page.id)
    scanned.state = PageState.CHANGED

    stored = repository.get_page(page.id)
    stored.change_threshold = 500
    repository.save(stored)

    writer.save_scan_state(scanned, PageState.CHANGED)
    await writer.drain()

    result = repository.load(page.id)
    assert result.change_threshold == 500
    # Stored state no longer matches what the scan started from: the user acknowledged.
    assert result.state is PageState.NO_CHANGE
    await writer.close()


@pytest.mark.asyncio
async def test_writer_drops_writes_for_removed_page(repository):
    writer = BackgroundWriter(repository)
    page = repository.add_page("https://example.com")

    writer.save_snapshots(page.id, [SnapshotWrite(Slot.NEW, "content")])
    writer.save_scan_state(page, PageState.NO_CHANGE)
    repository.remove_page(page.id)
    await writer.drain()

    assert repository.list_pages() == []
    assert repository.snapshots.load_html(page.id, Slot.NEW) == ""
    await writer.close()


@pytest.mark.asyncio
async def test_writer_logs_failures_and_keeps_going(repository, monkeypatch, caplog):
    writer = BackgroundWriter(repository)
    page = repository.add_page("https://example.com")
    original_save_html = repository.snapshots.save_html

    def flaky_save_html(page_id, slot, html):
        if slot is Slot.OLD:
            raise StorageError("disk full")
        original_save_html(page_id, slot, html)

    monkeypatch.setattr(repository.snapshots, "save_html", flaky_save_html)

    with caplog.at_level(logging.ERROR, logger="services.writer"):
        writer.save_snapshots(page.id, [SnapshotWrite(Slot.OLD, "x"), SnapshotWrite(Slot.NEW, "y")])
        await writer.drain()

    assert "Background write failed" in caplog.text
    assert repository.snapshots.load_html(page.id, Slot.NEW) == "y"
    await writer.close()
