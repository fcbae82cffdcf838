from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Sequence
from urllib.parse import urlparse

from config import settings
from models import Page, PageState, id_from_key, page_key
from services.state import Slot

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the key-value store cannot be read or written."""


class KeyValueStore:
    """String-keyed store of JSON values kept in a SQLite table."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or settings.DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=5, check_same_thread=False)

    def _initialize(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            connection.commit()

    def load(self, key: str) -> Any | None:
        try:
            with self._connect() as connection:
                row = connection.execute(
                    "SELECT value FROM storage WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not load {key}: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt value stored under {key}") from exc

    def save(self, key: str, value: Any) -> None:
        timestamp = datetime.now(UTC).isoformat()
        try:
            with self._connect() as connection:
                connection.execute(
                    """
                    INSERT INTO storage (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (key, json.dumps(value), timestamp),
                )
                connection.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise StorageError(f"Could not save {key}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            with self._connect() as connection:
                connection.execute("DELETE FROM storage WHERE key = ?", (key,))
                connection.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not remove {key}: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        """Return stored keys in insertion order, optionally filtered by prefix."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            with self._connect() as connection:
                rows = connection.execute(
                    "SELECT key FROM storage WHERE key LIKE ? ESCAPE '\\' ORDER BY rowid ASC",
                    (f"{escaped}%",),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not list keys: {exc}") from exc
        return [row[0] for row in rows]


def snapshot_key(page_id: str, slot: Slot) -> str:
    return f"html:{slot.value}:{page_id}"


class SnapshotStore:
    """OLD and NEW document snapshots for each page."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load_html(self, page_id: str, slot: Slot) -> str:
        """Return the stored snapshot, or an empty string if there is none."""
        html = self.store.load(snapshot_key(page_id, slot))
        return html if isinstance(html, str) else ""

    def save_html(self, page_id: str, slot: Slot, html: str) -> None:
        self.store.save(snapshot_key(page_id, slot), html)

    def delete(self, page_id: str) -> None:
        for slot in Slot:
            self.store.remove(snapshot_key(page_id, slot))


class PageRepository:
    """Loads and saves Page records. Save and delete failures are only logged."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.snapshots = SnapshotStore(store)

    def load(self, page_id: str) -> Page:
        try:
            data = self.store.load(page_key(page_id))
        except StorageError:
            logger.exception("Could not load page %s", page_id)
            data = None
        return Page.from_record(page_id, data if isinstance(data, dict) else None)

    def save(self, page: Page) -> None:
        try:
            self.store.save(page.key, page.to_record())
        except StorageError:
            logger.exception("Could not save page %s", page.id)

    def delete(self, page: Page) -> None:
        try:
            self.store.remove(page.key)
            self.snapshots.delete(page.id)
        except StorageError:
            logger.exception("Could not delete page %s", page.id)

    def list_pages(self) -> list[Page]:
        pages = []
        for key in self.store.keys("page:"):
            page_id = id_from_key(key)
            if page_id is not None:
                pages.append(self.load(page_id))
        return pages

    def find(self, page_id: str) -> Page | None:
        """Return the stored page, or None if it does not exist. Raises StorageError."""
        data = self.store.load(page_key(page_id))
        if not isinstance(data, dict):
            return None
        return Page.from_record(page_id, data)

    def get_page(self, page_id: str) -> Page:
        page = self.find(page_id)
        if page is None:
            raise ValueError("Страница с указанным ID не найдена")
        return page

    def save_scan_state(self, page: Page, seen_state: PageState) -> bool:
        """Merge the scan-owned fields of ``page`` into its stored record.

        Title, URL and scan settings are taken from storage, so edits made
        while the page was being scanned survive. If the stored state is no
        longer ``seen_state`` the page was acknowledged in the meantime and
        the stored state is kept. Returns False if the page has been removed.
        """
        stored = self.find(page.id)
        if stored is None:
            logger.info("Page %s was removed, dropping its scan result", page.id)
            return False

        if stored.state is seen_state:
            stored.state = page.state
        stored.error = page.error
        stored.last_autoscan_time = page.last_autoscan_time
        stored.old_scan_time = page.old_scan_time
        stored.new_scan_time = page.new_scan_time
        self.store.save(stored.key, stored.to_record())
        return True

    def save_snapshot(self, page_id: str, slot: Slot, html: str) -> bool:
        """Store a snapshot unless the page has been removed."""
        if self.store.load(page_key(page_id)) is None:
            logger.info("Page %s was removed, dropping its %s snapshot", page_id, slot.value)
            return False
        self.snapshots.save_html(page_id, slot, html)
        return True

    def _next_id(self) -> str:
        counter = self.store.load("meta:page_counter") or 0
        counter = int(counter) + 1
        self.store.save("meta:page_counter", counter)
        return str(counter)

    def add_page(
        self,
        url: str,
        title: str | None = None,
        change_threshold: int | None = None,
    ) -> Page:
        normalized_url = url.strip()
        if not normalized_url or not normalized_url.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")

        if any(page.url == normalized_url for page in self.list_pages()):
            raise ValueError("URL уже добавлен в отслеживание")

        page = Page(id=self._next_id(), url=normalized_url)
        page.title = title.strip() if title and title.strip() else _default_title(normalized_url)
        page.change_threshold = (
            change_threshold if change_threshold is not None else settings.DEFAULT_CHANGE_THRESHOLD
        )
        if page.change_threshold < 0:
            raise ValueError("Порог изменений не может быть отрицательным")
        self.store.save(page.key, page.to_record())
        return page

    def remove_page(self, page_id: str) -> Page:
        page = self.get_page(page_id)
        self.delete(page)
        return page

    def ensure_seed(self, defaults: Sequence[str]) -> None:
        """Create pages for the configured URLs once, on an empty store."""
        if self.store.load("meta:pages_seeded"):
            return

        normalized_defaults = [url.strip() for url in defaults or () if url.strip()]
        if normalized_defaults and not self.store.keys("page:"):
            for url in normalized_defaults:
                try:
                    self.add_page(url)
                except ValueError:
                    logger.warning("Skipping invalid seed URL %s", url)

        self.store.save("meta:pages_seeded", datetime.now(UTC).isoformat())


def _default_title(url: str) -> str:
    parsed = urlparse(url)
    path_segment = parsed.path.rstrip("/").split("/")[-1]
    if path_segment:
        return f"{parsed.netloc} · {path_segment}"
    return parsed.netloc or "New Page"


class AppSettingsRepository:
    """Settings changed at runtime through the bot."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._default_interval = settings.CHECK_INTERVAL_MINUTES
        self.sync_settings()

    def get_check_interval(self) -> int:
        try:
            raw = self.store.load("meta:check_interval_minutes")
        except StorageError:
            logger.exception("Could not load check interval")
            return self._default_interval
        if raw is None:
            return self._default_interval
        try:
            minutes = int(raw)
        except (TypeError, ValueError):
            return self._default_interval
        return minutes if minutes > 0 else self._default_interval

    def set_check_interval(self, minutes: int) -> int:
        if minutes <= 0:
            raise ValueError("Интервал должен быть положительным")
        self.store.save("meta:check_interval_minutes", minutes)
        settings.CHECK_INTERVAL_MINUTES = minutes
        return minutes

    def sync_settings(self) -> None:
        settings.CHECK_INTERVAL_MINUTES = self.get_check_interval()
