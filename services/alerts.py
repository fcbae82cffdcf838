"""Notifying administrators about page changes and errors."""
from __future__ import annotations

import asyncio
import logging
import sys
import traceback
from datetime import UTC, datetime
from html import escape
from typing import Sequence

from aiogram import Bot

from models import Page
from services.scanner import ScanOutcome, ScanReport

MAX_ALERT_LENGTH = 3500


async def _broadcast(bot: Bot, admin_chat_ids: Sequence[int], text: str, parse_mode: str | None = "HTML") -> int:
    """Send ``text`` to every admin and return how many messages went out."""
    delivered = 0
    for chat_id in admin_chat_ids:
        try:
            await bot.send_message(chat_id, text, parse_mode=parse_mode)
            delivered += 1
        except Exception as exc:
            # Logging here would feed AdminAlertHandler again.
            sys.stderr.write(f"Failed to notify admin {chat_id}: {exc!r}\n")
    return delivered


def build_change_message(page: Page) -> str:
    lines = ["🔔 <b>Страница изменилась!</b>", f"<b>{escape(page.title)}</b>", ""]
    if page.url:
        lines.append(f"🌐 <a href=\"{escape(page.url, quote=True)}\">Открыть страницу</a>")
    lines.append(f"Просмотрено? /page ack {escape(page.id)}")
    return "\n".join(lines)


def build_failure_message(outcome: ScanOutcome) -> str:
    page = outcome.page
    return (
        f"⚠️ Не удалось проверить страницу!\n\n"
        f"Страница: {escape(page.title)} (<code>{escape(page.id)}</code>)\n"
        f"URL: {escape(page.url or '')}\n"
        f"Ошибка: {escape(outcome.error or '')}"
    )


async def send_critical_alert(bot: Bot, admin_chat_ids: Sequence[int], message: str, tag_user: str | None = None) -> int:
    """Send critical alert to all admins, optionally tagging a user.

    Args:
        bot: Telegram bot instance
        admin_chat_ids: Admin chat IDs
        message: Alert text, already HTML-escaped
        tag_user: Optional username to tag
    """
    full_message = f"🚨 <b>КРИТИЧЕСКИЙ АЛЕРТ</b>\n\n{message}"
    if tag_user:
        full_message += f"\n\n{tag_user}"
    return await _broadcast(bot, admin_chat_ids, full_message)


async def send_scan_notifications(bot: Bot, admin_chat_ids: Sequence[int], report: ScanReport) -> int:
    """Tell admins about pages that changed or started failing in a scan.

    Pages that were already CHANGED or already failing are not repeated.
    Returns the number of messages sent.
    """
    if not admin_chat_ids:
        return 0

    sent = 0
    for page in report.newly_changed:
        sent += await _broadcast(bot, admin_chat_ids, build_change_message(page))
    for outcome in report.newly_failed:
        sent += await send_critical_alert(bot, admin_chat_ids, build_failure_message(outcome))
    return sent


class AdminAlertHandler(logging.Handler):
    """Logging handler that forwards ERROR records to Telegram admins.

    Records may come from executor threads (storage writes), so delivery is
    always scheduled on the bot's event loop.
    """

    def __init__(
        self,
        bot: Bot,
        admin_chat_ids: Sequence[int],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(level=logging.ERROR)
        self._bot = bot
        self._admin_chat_ids = tuple(admin_chat_ids)
        self._loop = loop
        self.setFormatter(logging.Formatter("%(message)s"))

    def _build_message(self, record: logging.LogRecord) -> str:
        if record.exc_info:
            details = "".join(traceback.format_exception(*record.exc_info))
        else:
            details = record.stack_info or self.format(record)

        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S %Z")
        return (
            f"⚠️ Ошибка уровня {record.levelname}\n"
            f"Время: {timestamp}\n"
            f"Логгер: {record.name}\n"
            f"Источник: {record.pathname}:{record.lineno}\n\n"
            f"{details[-MAX_ALERT_LENGTH:]}"
        )

    def _target_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is not None and not self._loop.is_closed():
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def emit(self, record: logging.LogRecord) -> None:
        if not self._admin_chat_ids or record.levelno < logging.ERROR:
            return

        # Plain text: tracebacks are full of characters Telegram reads as HTML.
        coroutine = _broadcast(self._bot, self._admin_chat_ids, self._build_message(record), parse_mode=None)
        loop = self._target_loop()
        if loop is None or not loop.is_running():
            asyncio.run(coroutine)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.create_task(coroutine)
        else:
            loop.call_soon_threadsafe(loop.create_task, coroutine)


__all__ = [
    "AdminAlertHandler",
    "MAX_ALERT_LENGTH",
    "build_change_message",
    "build_failure_message",
    "send_critical_alert",
    "send_scan_notifications",
]
