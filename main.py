import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from bot import router
from config import settings
from services import KeyValueStore, PageRepository, Scanner
from services.alerts import AdminAlertHandler, send_scan_notifications
from services.runtime import configure_autoscan_job, configure_scanner
from services.storage import AppSettingsRepository


# ensure logs are recorded both to stdout and to a rotating file
def configure_logging() -> None:
    log_dir = Path(os.getenv("LOG_DIR", "logs"))
    if not log_dir.is_absolute():
        log_dir = Path.cwd() / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "pagescan.log"

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            ),
        ],
        force=True,
    )


configure_logging()
logger = logging.getLogger("pagescan")


async def main() -> None:
    settings.validate()

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    logging.getLogger().addHandler(
        AdminAlertHandler(bot, settings.ADMIN_CHAT_IDS, loop=asyncio.get_running_loop())
    )

    store = KeyValueStore()
    # Restores an interval changed through /interval before the scheduler starts.
    AppSettingsRepository(store)
    pages = PageRepository(store)
    pages.ensure_seed(settings.MONITOR_URLS)

    scanner = Scanner(pages)
    configure_scanner(scanner)

    dispatcher = Dispatcher()
    dispatcher.include_router(router)

    async def run_autoscan() -> None:
        report = await scanner.autoscan()
        await send_scan_notifications(bot, settings.ADMIN_CHAT_IDS, report)

    scheduler = AsyncIOScheduler()
    autoscan_job = scheduler.add_job(
        run_autoscan,
        "interval",
        minutes=settings.CHECK_INTERVAL_MINUTES,
        coalesce=True,
        max_instances=1,
    )
    configure_autoscan_job(autoscan_job)
    scheduler.start()

    logger.info(
        "Bot started. Autoscan runs every %s minutes over %s pages",
        settings.CHECK_INTERVAL_MINUTES,
        len(pages.list_pages()),
    )

    try:
        await run_autoscan()
        await dispatcher.start_polling(bot)
    finally:
        scheduler.shutdown(wait=False)
        await scanner.close()
        await bot.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception:
        logger.exception("Fatal error")
