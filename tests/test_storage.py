from __future__ import annotations

import logging
import sqlite3

import pytest

from config import settings
from models import PageState
from services.state import Slot
from services.storage import (
    AppSettingsRepository,
    KeyValueStore,
    PageRepository,
    StorageError,
)


def test_key_value_store_round_trip(store):
    assert store.load("missing") is None

    store.save("page:1", {"title": "One"})
    store.save("page:2", {"title": "Two"})
    store.save("html:new:1", "<p>hi</p>")

    assert store.load("page:1") == {"title": "One"}
    assert store.load("html:new:1") == "<p>hi</p>"
    assert store.keys("page:") == ["page:1", "page:2"]

    # updating a value keeps the original insertion order
    store.save("page:1", {"title": "Uno"})
    assert store.keys("page:") == ["page:1", "page:2"]

    store.remove("page:1")
    assert store.load("page:1") is None
    assert store.keys("page:") == ["page:2"]


def test_key_value_store_prefix_is_literal(store):
    store.save("page_x", 1)
    store.save("pageAx", 2)
    assert store.keys("page_") == ["page_x"]


def test_corrupt_value_raises_storage_error(store, temp_db):
    with sqlite3.connect(temp_db) as connection:
        connection.execute(
            "INSERT INTO storage (key, value, updated_at) VALUES (?, ?, ?)",
            ("page:bad", "{not json", "now"),
        )
        connection.commit()

    with pytest.raises(StorageError):
        store.load("page:bad")


def test_repository_add_get_remove(repository):
    page = repository.add_page("https://example.com/news", "News")
    assert page.id == "1"
    assert page.title == "News"
    assert page.change_threshold == settings.DEFAULT_CHANGE_THRESHOLD

    loaded = repository.get_page(page.id)
    assert loaded == page

    second = repository.add_page("https://example.com/blog/")
    assert second.id == "2"
    assert second.title == "example.com · blog"

    assert [p.id for p in repository.list_pages()] == ["1", "2"]

    repository.snapshots.save_html(page.id, Slot.NEW, "<p>news</p>")
    removed = repository.remove_page(page.id)
    assert removed.id == page.id
    assert repository.snapshots.load_html(page.id, Slot.NEW) == ""

    with pytest.raises(ValueError):
        repository.get_page(page.id)


def test_repository_rejects_bad_and_duplicate_urls(repository):
    with pytest.raises(ValueError):
        repository.add_page("ftp://example.com")
    repository.add_page("https://example.com/a")
    with pytest.raises(ValueError):
        repository.add_page("https://example.com/a")


def test_load_missing_page_returns_defaults(repository):
    page = repository.load("404")
    assert page.id == "404"
    assert page.state is PageState.NO_CHANGE


def test_save_failure_is_logged_not_raised(repository, monkeypatch, caplog):
    page = repository.add_page("https://example.com/a")

    def broken_save(key, value):
        raise StorageError("disk full")

    monkeypatch.setattr(repository.store, "save", broken_save)
    with caplog.at_level(logging.ERROR, logger="services.storage"):
        repository.save(page)

    assert "Could not save page" in caplog.text


def test_delete_failure_is_logged_not_raised(repository, monkeypatch, caplog):
    page = repository.add_page("https://example.com/a")

    def broken_remove(key):
        raise StorageError("locked")

    monkeypatch.setattr(repository.store, "remove", broken_remove)
    with caplog.at_level(logging.ERROR, logger="services.storage"):
        repository.delete(page)

    assert "Could not delete page" in caplog.text


def test_snapshots_default_to_empty(repository):
    assert repository.snapshots.load_html("1", Slot.OLD) == ""
    repository.snapshots.save_html("1", Slot.OLD, "old")
    repository.snapshots.save_html("1", Slot.NEW, "new")
    assert repository.snapshots.load_html("1", Slot.OLD) == "old"
    assert repository.snapshots.load_html("1", Slot.NEW) == "new"


def test_seed_runs_once(temp_db):
    repository = PageRepository(KeyValueStore(temp_db))
    repository.ensure_seed(settings.MONITOR_URLS)
    assert [page.url for page in repository.list_pages()] == list(settings.MONITOR_URLS)

    for page in repository.list_pages():
        repository.remove_page(page.id)

    repository_again = PageRepository(KeyValueStore(temp_db))
    repository_again.ensure_seed(settings.MONITOR_URLS)
    assert repository_again.list_pages() == []


def test_app_settings_interval_persistence(store):
    repository = AppSettingsRepository(store)
    assert settings.CHECK_INTERVAL_MINUTES == 60

    repository.set_check_interval(7)
    assert settings.CHECK_INTERVAL_MINUTES == 7

    repository_again = AppSettingsRepository(store)
    assert repository_again.get_check_interval() == 7

    with pytest.raises(ValueError):
        repository.set_check_interval(0)
