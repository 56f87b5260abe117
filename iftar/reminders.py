"""Day-before iftar reminders for hosts and accepted guests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from sqlalchemy.orm import Session

from . import messages
from .crud import get_events_on
from .database import get_session
from .utils import tomorrow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reminder:
    chat_id: int
    text: str


def collect_reminders(session: Session, day: date) -> tuple[int, list[Reminder]]:
    """Build reminder messages for every event on ``day``.

    Returns the number of events found and the messages to send: one per
    accepted guest with a Telegram account, plus a head-count summary for the
    host.
    """
    events = get_events_on(session, day)
    reminders: list[Reminder] = []
    for event in events:
        accepted = [
            invitation
            for invitation in event.invitations
            if invitation.status == "accepted"
        ]
        guest_text = messages.guest_reminder(event)
        for invitation in accepted:
            guest = invitation.guest
            if guest is not None and guest.telegram_id:
                reminders.append(Reminder(guest.telegram_id, guest_text))
        if event.host is not None and event.host.telegram_id:
            reminders.append(
                Reminder(event.host.telegram_id, messages.host_reminder(event, accepted))
            )
    return len(events), reminders


async def send_reminders(bot: Bot, day: date | None = None) -> dict[str, int]:
    """Send reminders for ``day`` (tomorrow by default) and report totals."""
    target = day or tomorrow()
    logger.info("Checking reminders for %s", target.isoformat())
    with get_session() as session:
        event_count, reminders = collect_reminders(session, target)

    sent = failed = 0
    for reminder in reminders:
        try:
            await bot.send_message(reminder.chat_id, reminder.text)
        except TelegramAPIError as exc:
            failed += 1
            logger.warning("Failed to send reminder to %s: %s", reminder.chat_id, exc)
        else:
            sent += 1
    logger.info(
        "Reminders for %s: %s events, %s sent, %s failed",
        target.isoformat(),
        event_count,
        sent,
        failed,
    )
    return {"events": event_count, "sent": sent, "failed": failed}
