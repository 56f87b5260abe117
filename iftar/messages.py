"""Bot message texts, deep-link payloads, and inline keyboards."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, WebAppInfo
from aiogram.utils.markdown import hbold, hitalic
from aiogram.utils.text_decorations import html_decoration

from .models import Event, Invitation, User
from .utils import format_day_month, format_time, ramadan_day

DEFAULT_REMINDER_TIME = "18:00"

GREETING = (
    f"🌙 {hbold('Салам!')}\n\n"
    "Это приложение для координации ифтаров во время Рамадана.\n\n"
    f"✨ {hbold('Что можно делать:')}\n"
    "• Создавать приглашения на ифтар\n"
    "• Видеть кто уже приглашён на какие даты\n"
    "• Отвечать на приглашения одним тапом\n"
    "• Не пересекаться с другими хозяевами\n\n"
    "Нажми кнопку ниже чтобы начать 👇"
)

EVENT_NOT_FOUND = "❌ Приглашение не найдено или устарело."
ALREADY_RECORDED = "Уже записано ✓"
ANSWER_RECORDED = "Ответ записан"
ANSWER_INVALID = "❌ Не удалось записать ответ."
BROADCAST_USAGE = "Использование: /broadcast <сообщение>"
REMINDERS_SENT = "✅ Напоминания отправлены"

STATUS_EMOJI = {"accepted": "✅", "declined": "❌", "maybe": "🤔"}


@dataclass(frozen=True)
class RsvpAnswer:
    event_id: str
    status: str
    guest_count: int


def _parse_count(raw: str) -> int:
    try:
        return int(raw) or 1
    except ValueError:
        return 1


def rsvp_callback_data(event_id: str, status: str, guest_count: int) -> str:
    return f"rsvp:{event_id}:{status}:{guest_count}"


def parse_rsvp_callback(data: str | None) -> RsvpAnswer | None:
    """Parse ``rsvp:<event_id>:<status>:<count>`` button data."""
    parts = (data or "").split(":")
    if len(parts) < 4 or parts[0] != "rsvp" or not parts[1]:
        return None
    return RsvpAnswer(parts[1], parts[2], _parse_count(parts[3]))


def parse_start_payload(payload: str | None) -> tuple[str, str] | RsvpAnswer | None:
    """Decode a ``/start`` deep-link payload.

    ``event_<id>`` opens an invitation card and yields ``("event", id)``;
    ``rsvp_<id>_<status>_<count>`` answers straight from the web page.
    """
    payload = (payload or "").strip()
    if payload.startswith("rsvp_"):
        parts = payload.split("_")
        if len(parts) >= 4 and parts[1]:
            return RsvpAnswer(parts[1], parts[2], _parse_count(parts[3]))
        return None
    if payload.startswith("event_"):
        event_id = payload[len("event_") :]
        return ("event", event_id) if event_id else None
    return None


def _web_app_button(text: str, url: str) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=text, web_app=WebAppInfo(url=url))


def start_keyboard(mini_app_url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[_web_app_button("🌙 Открыть Iftar App", mini_app_url)]]
    )


def create_invite_keyboard(mini_app_url: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[_web_app_button("🌙 Создать приглашение", mini_app_url)]]
    )


def rsvp_keyboard(
    event_id: str,
    mini_app_url: str,
    *,
    status: str | None = None,
    guest_count: int = 1,
) -> InlineKeyboardMarkup:
    """RSVP buttons; the current answer, if any, is ticked."""
    accepted = status == "accepted"

    def _label(text: str, selected: bool) -> str:
        return f"{text} ✓" if selected else text

    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text="✅ (1) ✓" if accepted and guest_count == 1 else "✅ Приду (1)",
                    callback_data=rsvp_callback_data(event_id, "accepted", 1),
                ),
                InlineKeyboardButton(
                    text=_label("👥 +1", accepted and guest_count == 2),
                    callback_data=rsvp_callback_data(event_id, "accepted", 2),
                ),
                InlineKeyboardButton(
                    text=_label("👨‍👩‍👧 +2-3", accepted and guest_count >= 3),
                    callback_data=rsvp_callback_data(event_id, "accepted", 3),
                ),
            ],
            [
                InlineKeyboardButton(
                    text=_label("❌ Не смогу", status == "declined"),
                    callback_data=rsvp_callback_data(event_id, "declined", 0),
                )
            ],
            [_web_app_button("📅 Открыть календарь", mini_app_url)],
        ]
    )


def host_name(host: User | None, fallback: str) -> str:
    if host is None:
        return fallback
    return host.first_name or host.username or fallback


def invitation_card(event: Event, *, ramadan_start: date) -> str:
    location = html_decoration.quote(event.location or "Уточняется")
    if event.address:
        location = f"{location} · {html_decoration.quote(event.address)}"
    lines = [
        f"🌙 {hbold('Приглашение на ифтар')}",
        "",
        f"{hbold(host_name(event.host, 'Друг'))} зовёт тебя разделить ифтар",
        "",
        f"📅  {hbold(f'{ramadan_day(event.date, ramadan_start)} Рамадан')}"
        f" · {format_day_month(event.date)}",
        f"⏰  {format_time(event.iftar_time) or '—'}",
        f"📍  {location}",
    ]
    if event.notes:
        lines.extend(["", f"💬 {hitalic(event.notes)}"])
    lines.extend(["", hbold("Ты придёшь?")])
    return "\n".join(lines)


def callback_answer(status: str, guest_count: int, *, changed: bool) -> str:
    if not changed:
        return ALREADY_RECORDED
    if status == "accepted":
        if guest_count == 1:
            label = ""
        elif guest_count == 2:
            label = " вдвоём"
        else:
            label = f" ({guest_count} человека)"
        return f"✅ Отлично! Ты придёшь{label}."
    if status == "declined":
        return "❌ Понял, ты не сможешь."
    if status == "maybe":
        return '🤔 Окей, пока "может быть".'
    return ANSWER_RECORDED


def web_rsvp_reply(event: Event, status: str, guest_count: int) -> str:
    """Confirmation for an answer given on the invitation web page."""
    name = html_decoration.quote(host_name(event.host, "друга"))
    if status == "accepted":
        if guest_count == 1:
            label = ""
        elif guest_count == 2:
            label = " вдвоём"
        else:
            label = f" ({guest_count} чел.)"
        return (
            f"✅ {hbold('Отлично!')}\n\n"
            f"Ты{label} придёшь на ифтар к {name}!\n\n"
            f"📅 {format_day_month(event.date)}\n"
            f"📍 {html_decoration.quote(event.location or 'Место уточняется')}\n\n"
            f"{hitalic('Хочешь создать своё приглашение?')}"
        )
    return (
        f"😔 {hbold('Жаль!')}\n\n"
        f"Ты не сможешь прийти на ифтар к {name}.\n"
        "Может в другой раз!\n\n"
        f"{hitalic('Хочешь пригласить друзей к себе?')}"
    )


def host_notification(
    event: Event, *, guest_name: str, status: str, guest_count: int
) -> str:
    count_text = f" ({guest_count} чел.)" if guest_count > 1 else ""
    label = {
        "accepted": f"придёт{count_text}",
        "declined": "не сможет",
        "maybe": "пока не уверен",
    }.get(status, status)
    return (
        f"{STATUS_EMOJI.get(status, '')} {hbold(guest_name)} {label}!\n\n"
        f"📅 Ифтар {format_day_month(event.date)}\n"
        f"📍 {html_decoration.quote(event.location or 'Место не указано')}"
    )


def invite_url(mini_app_url: str, event_id: str) -> str:
    return f"{mini_app_url.rstrip('/')}/invite/{event_id}"


def inline_result_title(event: Event) -> str:
    return f"🌙 Ифтар {format_day_month(event.date)}"


def inline_result_description(event: Event, *, ramadan_start: date) -> str:
    return (
        f"{ramadan_day(event.date, ramadan_start)} Рамадан • "
        f"{event.location or 'Место не указано'}"
    )


def guest_reminder(event: Event) -> str:
    return (
        f"🔔 {hbold('Напоминание!')}\n\n"
        f"Завтра ифтар у {html_decoration.quote(host_name(event.host, 'Хозяин'))}!\n"
        f"📅 {format_day_month(event.date)}\n"
        f"⏰ {format_time(event.iftar_time) or DEFAULT_REMINDER_TIME}\n"
        f"📍 {html_decoration.quote(event.location or 'Место уточняется')}"
    )


def guest_label(invitation: Invitation) -> str:
    name = host_name(invitation.guest, "Гость")
    count = invitation.guest_count or 1
    return f"{name} (+{count - 1})" if count > 1 else name


def host_reminder(event: Event, accepted: Iterable[Invitation]) -> str:
    accepted = list(accepted)
    total = sum(invitation.guest_count or 1 for invitation in accepted)
    names = ", ".join(guest_label(invitation) for invitation in accepted)
    return (
        f"🔔 {hbold('Напоминание!')}\n\n"
        "Завтра твой ифтар!\n"
        f"📅 {format_day_month(event.date)}\n"
        f"⏰ {format_time(event.iftar_time) or DEFAULT_REMINDER_TIME}\n"
        f"👥 Придут ({total} чел.): {html_decoration.quote(names) or 'пока никто'}"
    )


def broadcast_started(recipients: int) -> str:
    return f"📡 Рассылка начата для {recipients} пользователей..."


def broadcast_finished(sent: int, failed: int) -> str:
    return f"✅ Рассылка завершена!\n\n📨 Отправлено: {sent}\n❌ Ошибок: {failed}"


FEEDBACK_PROMPT = "Напишите или запишите голосовое сообщение с отзывом 📝🎤"
FEEDBACK_THANKS = "Спасибо за отзыв! 🤲"
VOICE_FEEDBACK_TEXT = "[голосовое сообщение]"


def feedback_header(
    first_name: str | None, username: str | None, text: str | None = None
) -> str:
    """Admin copy of a feedback message; ``text`` is None for voice notes."""
    handle = f"@{username}" if username else "без username"
    author = f"{html_decoration.quote(first_name or '')} ({handle})"
    if text is None:
        return f"💬 Голосовой отзыв от {author}"
    return f"💬 Отзыв от {author}:\n\n{html_decoration.quote(text)}"
