"""Telegram command handlers for the bot."""
from __future__ import annotations

import asyncio
import html
import logging
from datetime import UTC, datetime
from functools import partial
from typing import Any, Callable, Sequence, TypeVar

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from bot.filters import IsAdmin
from config import settings
from models import Page, PageState
from services.alerts import send_scan_notifications
from services.fetcher import FetchError, extract_title
from services.runtime import get_scanner, update_autoscan_interval
from services.storage import AppSettingsRepository, PageRepository, StorageError

logger = logging.getLogger(__name__)
router = Router()

T = TypeVar("T")

PAGE_ACTIONS = ("add", "remove", "ack", "threshold", "rate", "numbers")


def _plural_category(value: int) -> str:
    val = abs(int(value))
    if val % 10 == 1 and val % 100 != 11:
        return "one"
    if 2 <= val % 10 <= 4 and not 12 <= val % 100 <= 14:
        return "few"
    return "many"


def _minute_form(value: int, case: str = "nominative") -> str:
    forms = {
        "nominative": {"one": "минута", "few": "минуты", "many": "минут"},
        "accusative": {"one": "минуту", "few": "минуты", "many": "минут"},
    }
    case_forms = forms.get(case, forms["nominative"])
    return case_forms[_plural_category(value)]


def _format_minutes(value: int, case: str = "nominative") -> str:
    return f"{value} {_minute_form(value, case)}"


def _format_interval_phrase(value: int) -> str:
    prefix = "каждую" if _plural_category(value) == "one" else "каждые"
    return f"{prefix} {_format_minutes(value, case='accusative')}"


def _format_timestamp(value: int | None) -> str:
    if value is None:
        return "никогда"
    return datetime.fromtimestamp(value / 1000, UTC).strftime("%Y-%m-%d %H:%M UTC")


def _page_icon(page: Page) -> str:
    if page.has_error:
        return "⚠️"
    return "🔔" if page.state is PageState.CHANGED else "✅"


def _compose_pages_overview(pages: Sequence[Page], notice: str | None = None) -> str:
    parts = []
    if notice:
        parts.append(f"{notice}\n\n")
    parts.append("📋 <b>Отслеживаемые страницы</b>\n")

    if not pages:
        parts.append("\n— Пока ничего нет. Добавьте: /page add URL [| название]\n")
        return "".join(parts)

    for page in pages:
        rate = _format_minutes(page.scan_rate_minutes) if page.scan_rate_minutes > 0 else "вручную"
        parts.append(
            f"\n{_page_icon(page)} <code>{html.escape(page.id)}</code> "
            f"<b>{html.escape(page.title)}</b>\n"
            f"    {html.escape(page.url or '')}\n"
            f"    порог: {page.change_threshold}, проверка: {rate}, "
            f"цифры: {'игнорируются' if page.ignore_numbers else 'учитываются'}\n"
            f"    обновлено: {_format_timestamp(page.new_scan_time)}"
        )
        if page.has_error:
            parts.append(f"\n    ошибка: <i>{html.escape(page.error_message)}</i>")
    return "".join(parts)


def _parse_add_payload(payload: str) -> tuple[str, str | None]:
    if not payload:
        raise ValueError("Укажите URL для добавления")

    url_part, title_part = (payload.split("|", 1) + [""])[:2]
    url = url_part.strip()
    title = title_part.strip() or None

    if not url:
        raise ValueError("Укажите корректный URL")
    return url, title


def _parse_int(payload: str, error: str) -> int:
    try:
        return int(payload.strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(error) from exc


def _split_id_value(payload: str, usage: str) -> tuple[str, str]:
    parts = payload.split(maxsplit=1)
    if len(parts) < 2:
        raise ValueError(f"Использование: {usage}")
    return parts[0], parts[1]


def apply_page_action(repository: PageRepository, action: str, payload: str) -> tuple[Page, str]:
    """Run a /page sub-command against the repository.

    Returns the affected page and a notice for the user. Raises ValueError
    with a user-readable message on bad input.
    """
    if action == "add":
        url, title = _parse_add_payload(payload)
        page = repository.add_page(url, title)
        return page, f"Добавлена новая страница: <b>{html.escape(page.title)}</b>"

    if action == "remove":
        page = repository.remove_page(payload.strip())
        return page, f"Удалена <b>{html.escape(page.title)}</b>."

    if action == "ack":
        page = repository.get_page(payload.strip())
        page.acknowledge()
        repository.save(page)
        return page, f"Изменения на <b>{html.escape(page.title)}</b> отмечены как просмотренные."

    if action == "threshold":
        page_id, raw_value = _split_id_value(payload, "/page threshold ID СИМВОЛОВ")
        value = _parse_int(raw_value, "Порог должен быть целым числом")
        if value < 0:
            raise ValueError("Порог изменений не может быть отрицательным")
        page = repository.get_page(page_id)
        page.change_threshold = value
        repository.save(page)
        return page, f"Порог для <b>{html.escape(page.title)}</b>: {value} символов."

    if action == "rate":
        page_id, raw_value = _split_id_value(payload, "/page rate ID МИНУТ")
        value = _parse_int(raw_value, "Интервал должен быть целым числом")
        if value < 0:
            raise ValueError("Интервал не может быть отрицательным")
        page = repository.get_page(page_id)
        page.scan_rate_minutes = value
        repository.save(page)
        rate = _format_interval_phrase(value) if value else "только вручную"
        return page, f"<b>{html.escape(page.title)}</b> проверяется {rate}."

    if action == "numbers":
        page = repository.get_page(payload.strip())
        page.ignore_numbers = not page.ignore_numbers
        repository.save(page)
        mode = "игнорируются" if page.ignore_numbers else "учитываются"
        return page, f"Изменения цифр на <b>{html.escape(page.title)}</b> {mode}."

    raise ValueError("Неизвестное действие. Доступно: " + ", ".join(PAGE_ACTIONS))


async def _run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run a synchronous storage call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args))


def _store_title(repository: PageRepository, page_id: str, title: str) -> None:
    # Reload so a scan that finished meanwhile is not overwritten.
    stored = repository.find(page_id)
    if stored is not None:
        stored.title = title
        repository.save(stored)


async def _fill_title_from_page(repository: PageRepository, page: Page) -> None:
    scanner = get_scanner()
    try:
        content = await scanner.fetcher.fetch(page)
    except FetchError as exc:
        logger.info("Could not fetch title for %s: %s", page.url, exc)
        return
    title = extract_title(content)
    if title:
        page.title = title
        await _run_blocking(_store_title, repository, page.id, title)


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    """Handler for /start command."""
    user_id = message.from_user.id if message.from_user else None
    logger.info("User %s started the bot", user_id)

    if user_id in settings.ADMIN_CHAT_IDS:
        await message.answer(
            "✅ <b>Бот активирован!</b>\n\n"
            "Бот проверяет отслеживаемые страницы и сообщает о значимых изменениях.\n\n"
            "📋 Доступные команды:\n"
            "/pages - Список страниц\n"
            "/page add URL [| название] - Добавить страницу\n"
            "/page remove ID - Удалить страницу\n"
            "/page ack ID - Отметить изменения как просмотренные\n"
            "/page threshold ID N - Порог изменений в символах\n"
            "/page rate ID МИНУТ - Частота проверки (0 - вручную)\n"
            "/page numbers ID - Игнорировать изменения цифр\n"
            "/scan [ID] - Проверить сейчас\n"
            "/interval МИНУТ - Как часто запускать автопроверку",
            parse_mode='HTML'
        )
    else:
        await message.answer(
            "👋 Привет! Этот бот предназначен только для администраторов.",
            parse_mode='HTML'
        )


@router.message(Command("pages"), IsAdmin())
async def cmd_pages(message: Message) -> None:
    repository = get_scanner().pages
    pages = await _run_blocking(repository.list_pages)
    await message.answer(_compose_pages_overview(pages), parse_mode='HTML', disable_web_page_preview=True)


@router.message(Command("page"), IsAdmin())
async def cmd_page(message: Message) -> None:
    """Manage a single tracked page."""
    repository = get_scanner().pages
    parts = (message.text or "").split(maxsplit=2)
    if len(parts) < 2:
        await message.answer(
            "Использование: /page " + "|".join(PAGE_ACTIONS) + " ...",
            parse_mode='HTML'
        )
        return

    action = parts[1].lower()
    payload = parts[2] if len(parts) > 2 else ""
    try:
        page, notice = await _run_blocking(apply_page_action, repository, action, payload)
    except (ValueError, StorageError) as exc:
        await message.answer(
            f"❌ <b>Ошибка:</b> {html.escape(str(exc))}",
            parse_mode='HTML'
        )
        return

    if action == "add" and "|" not in payload:
        await _fill_title_from_page(repository, page)
        notice = f"Добавлена новая страница: <b>{html.escape(page.title)}</b>"

    pages = await _run_blocking(repository.list_pages)
    await message.answer(
        _compose_pages_overview(pages, notice=notice),
        parse_mode='HTML',
        disable_web_page_preview=True,
    )


@router.message(Command("scan"), IsAdmin())
async def cmd_scan(message: Message) -> None:
    """Scan one page or all pages immediately."""
    scanner = get_scanner()
    parts = (message.text or "").split(maxsplit=1)

    page_ids: list[str] | None = None
    try:
        if len(parts) > 1:
            page = await _run_blocking(scanner.pages.get_page, parts[1].strip())
            page_ids = [page.id]
        report = await scanner.rescan(page_ids)
    except (ValueError, StorageError) as exc:
        await message.answer(f"❌ <b>Ошибка:</b> {html.escape(str(exc))}", parse_mode='HTML')
        return

    if not report.outcomes:
        await message.answer("Нет страниц для проверки.", parse_mode='HTML')
        return

    if message.bot is not None:
        await send_scan_notifications(message.bot, settings.ADMIN_CHAT_IDS, report)

    await message.answer(
        f"Готово: успешно {report.succeeded}, с ошибками {report.failed}.\n\n"
        + _compose_pages_overview([outcome.page for outcome in report.outcomes]),
        parse_mode='HTML',
        disable_web_page_preview=True,
    )


@router.message(Command("interval"), IsAdmin())
async def cmd_interval(message: Message) -> None:
    parts = (message.text or "").split(maxsplit=1)
    if len(parts) < 2:
        await message.answer(
            f"Автопроверка запускается {_format_interval_phrase(settings.CHECK_INTERVAL_MINUTES)}.",
            parse_mode='HTML'
        )
        return

    try:
        minutes = _parse_int(parts[1], "Интервал должен быть целым числом")
        app_settings = await _run_blocking(AppSettingsRepository, get_scanner().pages.store)
        await _run_blocking(app_settings.set_check_interval, minutes)
        update_autoscan_interval(minutes)
    except (ValueError, StorageError) as exc:
        await message.answer(f"❌ <b>Ошибка:</b> {html.escape(str(exc))}", parse_mode='HTML')
        return

    await message.answer(
        f"⏱ Автопроверка теперь запускается {_format_interval_phrase(minutes)}.",
        parse_mode='HTML'
    )
