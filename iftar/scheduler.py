"""APScheduler integration."""

from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .bot import create_bot
from .config import settings
from .reminders import send_reminders

logger = logging.getLogger(__name__)

_scheduler: BackgroundScheduler | None = None


def run_reminder_job() -> dict[str, int]:
    """Send tomorrow's reminders with a short-lived bot session."""

    async def _run() -> dict[str, int]:
        bot = create_bot()
        try:
            return await send_reminders(bot)
        finally:
            await bot.session.close()

    return asyncio.run(_run())


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler
    if not settings.enable_scheduler:
        return None
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_reminder_job,
        "cron",
        hour=settings.reminder_hour,
        minute=0,
        id="iftar-reminders",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Reminder job scheduled daily at %02d:00 UTC", settings.reminder_hour)
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
