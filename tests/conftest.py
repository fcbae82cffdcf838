"""Pytest configuration and fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

from config import settings
from services.storage import KeyValueStore, PageRepository


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch, tmp_path) -> None:
    """Set up test environment variables"""
    monkeypatch.setenv('BOT_TOKEN', 'test_token_123456')
    monkeypatch.setenv('ADMIN_CHAT_IDS', '123456789,987654321')
    monkeypatch.setenv('CHECK_INTERVAL_MINUTES', '60')
    monkeypatch.setenv('MONITOR_URLS', 'https://example.com/page1,https://example.com/page2')
    monkeypatch.setenv('REQUEST_DELAY_SECONDS', '0')
    monkeypatch.setenv('DEFAULT_CHANGE_THRESHOLD', '100')
    monkeypatch.setenv('DB_PATH', str(tmp_path / 'default.db'))
    settings.reload()


@pytest.fixture
def temp_db(tmp_path, monkeypatch) -> Path:
    """Point the storage layer at a fresh database file"""
    db_path = tmp_path / 'pagescan.db'
    monkeypatch.setattr(settings, 'DB_PATH', db_path)
    return db_path


@pytest.fixture
def store(temp_db) -> KeyValueStore:
    return KeyValueStore(temp_db)


@pytest.fixture
def repository(store) -> PageRepository:
    return PageRepository(store)


@pytest.fixture
def sample_html() -> str:
    """Sample page used as a scan baseline"""
    return """
    <html>
        <head><title>Release notes</title></head>
        <body>
            <h1>Release notes</h1>
            <p>Version 1.2 fixes a crash when opening large files.</p>
            <p>Downloads so far: 1024</p>
        </body>
    </html>
    """
