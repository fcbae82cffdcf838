"""Configuration helpers for environment-driven settings."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Tuple, TypeVar

from dotenv import load_dotenv

if os.getenv("PYTEST_CURRENT_TEST") is None:
    load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Safari/537.36 pagescan"
)

T = TypeVar("T", int, float)


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(entry.strip() for entry in value.split(",") if entry.strip())


def _env_number(name: str, default: str, cast: Callable[[str], T], *, allow_zero: bool) -> T:
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except ValueError as exc:
        kind = "an integer" if cast is int else "a number"
        raise ValueError(f"{name} must be {kind}, got {raw!r}") from exc

    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'zero or ' if allow_zero else ''}positive")
    return value


def _env_path(name: str, default: str) -> Path:
    path = Path(os.getenv(name, default).strip())
    return path if path.is_absolute() else Path.cwd() / path


@dataclass(slots=True)
class Settings:
    """Runtime application settings sourced from environment variables."""

    BOT_TOKEN: str = field(init=False)
    ADMIN_CHAT_IDS: Tuple[int, ...] = field(init=False)
    CHECK_INTERVAL_MINUTES: int = field(init=False)
    MONITOR_URLS: Tuple[str, ...] = field(init=False)
    HEADERS: dict[str, str] = field(init=False)
    DB_PATH: Path = field(init=False)
    REQUEST_TIMEOUT: float = field(init=False)
    REQUEST_DELAY_SECONDS: float = field(init=False)
    DEFAULT_CHANGE_THRESHOLD: int = field(init=False)

    def __post_init__(self) -> None:
        self.reload()

    def reload(self) -> None:
        self.BOT_TOKEN = os.getenv("BOT_TOKEN", "").strip()
        try:
            self.ADMIN_CHAT_IDS = tuple(
                int(chat_id) for chat_id in _split_csv(os.getenv("ADMIN_CHAT_IDS", ""))
            )
        except ValueError as exc:
            raise ValueError("ADMIN_CHAT_IDS must be a comma separated list of integers") from exc

        # How often the scheduler wakes up; each page still has its own scan rate.
        self.CHECK_INTERVAL_MINUTES = _env_number("CHECK_INTERVAL_MINUTES", "5", int, allow_zero=False)

        # Seed list only; an empty value is fine once pages live in the store.
        self.MONITOR_URLS = _split_csv(os.getenv("MONITOR_URLS", ""))

        self.HEADERS = {"User-Agent": os.getenv("USER_AGENT", DEFAULT_USER_AGENT)}
        self.DB_PATH = _env_path("DB_PATH", "data/pagescan.db")

        self.REQUEST_TIMEOUT = _env_number("REQUEST_TIMEOUT", "60", float, allow_zero=False)
        self.REQUEST_DELAY_SECONDS = _env_number("REQUEST_DELAY_SECONDS", "3.0", float, allow_zero=True)
        self.DEFAULT_CHANGE_THRESHOLD = _env_number("DEFAULT_CHANGE_THRESHOLD", "100", int, allow_zero=True)

    def validate(self) -> None:
        if not self.BOT_TOKEN:
            raise ValueError("BOT_TOKEN is required in .env file")
        if not self.ADMIN_CHAT_IDS:
            raise ValueError("ADMIN_CHAT_IDS is required in .env file")

settings = Settings()
