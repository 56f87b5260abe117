"""Telegram bot: deep-link invitations, RSVP buttons, sharing, admin tools."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from aiogram import Bot, Dispatcher, F, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.types import (
    CallbackQuery,
    InlineQuery,
    InlineQueryResultArticle,
    InputTextMessageContent,
    LinkPreviewOptions,
    Message,
)
from aiogram.types import User as TelegramUser
from sqlalchemy.orm import Session

from . import messages
from .config import settings
from .crud import (
    ensure_invitation,
    get_all_telegram_ids,
    get_event,
    get_or_create_user,
    get_upcoming_hosted_events,
    get_user_by_telegram_id,
    record_rsvp,
    save_feedback,
)
from .database import get_session
from .messages import RsvpAnswer
from .models import Event, User
from .reminders import send_reminders

logger = logging.getLogger(__name__)

BROADCAST_BATCH_SIZE = 30
BROADCAST_PAUSE_SECONDS = 1.0
INLINE_RESULTS_LIMIT = 10

router = Router(name="iftar")


class FeedbackForm(StatesGroup):
    waiting = State()


def create_bot(token: str | None = None) -> Bot:
    token = token or settings.bot_token
    if not token:
        raise RuntimeError("Bot token is not configured; set IFTAR_BOT_TOKEN")
    return Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))


def create_dispatcher() -> Dispatcher:
    dispatcher = Dispatcher()
    dispatcher.include_router(router)
    return dispatcher


async def run_polling() -> None:
    bot = create_bot()
    dispatcher = create_dispatcher()
    try:
        await bot.delete_webhook(drop_pending_updates=True)
    except TelegramAPIError as exc:
        logger.warning("Could not drop webhook before polling: %s", exc)
    logger.info("Bot started in polling mode")
    await dispatcher.start_polling(bot)


def is_admin(telegram_id: int | None) -> bool:
    return telegram_id is not None and telegram_id in settings.admin_ids


def _remember_user(session: Session, from_user: TelegramUser) -> User:
    return get_or_create_user(
        session,
        telegram_id=from_user.id,
        username=from_user.username,
        first_name=from_user.first_name,
        last_name=from_user.last_name,
    )


def _display_name(from_user: TelegramUser) -> str:
    return from_user.first_name or from_user.username or "Гость"


async def notify(bot: Bot, chat_id: int, text: str) -> bool:
    try:
        await bot.send_message(chat_id, text)
    except TelegramAPIError as exc:
        logger.warning("Failed to notify %s: %s", chat_id, exc)
        return False
    return True


def _host_chat_id(event: Event, responder_id: int) -> int | None:
    host = event.host
    if host is None or not host.telegram_id or host.telegram_id == responder_id:
        return None
    return host.telegram_id


@router.message(CommandStart())
async def handle_start(message: Message, command: CommandObject, bot: Bot) -> None:
    payload = messages.parse_start_payload(command.args)
    if isinstance(payload, RsvpAnswer):
        await _answer_from_web(message, payload, bot)
        return
    if payload is not None:
        await _show_invitation(message, payload[1])
        return
    await message.answer(
        messages.GREETING,
        reply_markup=messages.start_keyboard(settings.mini_app_url),
    )


async def _show_invitation(message: Message, event_id: str) -> None:
    with get_session() as session:
        event = get_event(session, event_id)
        if event is None:
            text = None
        else:
            if message.from_user is not None:
                user = _remember_user(session, message.from_user)
                ensure_invitation(session, event_id=event.id, guest_id=user.id)
            text = messages.invitation_card(
                event, ramadan_start=settings.ramadan_start_date
            )

    if text is None:
        await message.answer(messages.EVENT_NOT_FOUND)
        return
    await message.answer(
        text, reply_markup=messages.rsvp_keyboard(event_id, settings.mini_app_url)
    )


async def _answer_from_web(message: Message, answer: RsvpAnswer, bot: Bot) -> None:
    if message.from_user is None:
        return
    reply = None
    host_notice: tuple[int, str] | None = None
    try:
        with get_session() as session:
            event = get_event(session, answer.event_id)
            if event is not None:
                user = _remember_user(session, message.from_user)
                invitation, _ = record_rsvp(
                    session,
                    event_id=event.id,
                    guest_id=user.id,
                    status=answer.status,
                    guest_count=answer.guest_count,
                )
                reply = messages.web_rsvp_reply(
                    event, invitation.status, invitation.guest_count
                )
                host_chat = _host_chat_id(event, message.from_user.id)
                if host_chat is not None:
                    host_notice = (
                        host_chat,
                        messages.host_notification(
                            event,
                            guest_name=_display_name(message.from_user),
                            status=invitation.status,
                            guest_count=invitation.guest_count,
                        ),
                    )
    except ValueError:
        await message.answer(messages.ANSWER_INVALID)
        return

    if reply is None:
        await message.answer(messages.EVENT_NOT_FOUND)
        return
    await message.answer(
        reply, reply_markup=messages.create_invite_keyboard(settings.mini_app_url)
    )
    if host_notice is not None:
        await notify(bot, *host_notice)


@router.callback_query(F.data.startswith("rsvp:"))
async def handle_rsvp_callback(callback: CallbackQuery, bot: Bot) -> None:
    answer = messages.parse_rsvp_callback(callback.data)
    if answer is None:
        await callback.answer()
        return

    found = False
    changed = False
    status = answer.status
    guest_count = answer.guest_count
    host_notice: tuple[int, str] | None = None
    try:
        with get_session() as session:
            event = get_event(session, answer.event_id)
            if event is not None:
                found = True
                user = _remember_user(session, callback.from_user)
                invitation, changed = record_rsvp(
                    session,
                    event_id=event.id,
                    guest_id=user.id,
                    status=answer.status,
                    guest_count=answer.guest_count,
                )
                status, guest_count = invitation.status, invitation.guest_count
                host_chat = _host_chat_id(event, callback.from_user.id)
                if changed and host_chat is not None:
                    host_notice = (
                        host_chat,
                        messages.host_notification(
                            event,
                            guest_name=_display_name(callback.from_user),
                            status=status,
                            guest_count=guest_count,
                        ),
                    )
    except ValueError:
        await callback.answer(messages.ANSWER_INVALID, show_alert=True)
        return

    if not found:
        await callback.answer(messages.EVENT_NOT_FOUND, show_alert=True)
        return

    await callback.answer(
        messages.callback_answer(status, guest_count, changed=changed),
        show_alert=changed,
    )
    if host_notice is not None:
        await notify(bot, *host_notice)

    if isinstance(callback.message, Message):
        keyboard = messages.rsvp_keyboard(
            answer.event_id,
            settings.mini_app_url,
            status=status,
            guest_count=guest_count,
        )
        try:
            await callback.message.edit_reply_markup(reply_markup=keyboard)
        except TelegramBadRequest as exc:
            # Old messages and unchanged markup cannot be edited.
            logger.debug("Could not update RSVP keyboard: %s", exc)


def filter_shareable_events(events: Iterable[Event], query: str | None) -> list[Event]:
    """Match an inline query against event location or ISO date."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(events)
    return [
        event
        for event in events
        if needle in (event.location or "").lower() or needle in event.date.isoformat()
    ]


def _inline_result(event: Event) -> InlineQueryResultArticle:
    return InlineQueryResultArticle(
        id=event.id,
        title=messages.inline_result_title(event),
        description=messages.inline_result_description(
            event, ramadan_start=settings.ramadan_start_date
        ),
        thumbnail_url=f"{settings.mini_app_url.rstrip('/')}/moon.svg",
        input_message_content=InputTextMessageContent(
            message_text=messages.invite_url(settings.mini_app_url, event.id),
            link_preview_options=LinkPreviewOptions(
                show_above_text=True, prefer_large_media=True
            ),
        ),
    )


@router.inline_query()
async def handle_inline_query(inline_query: InlineQuery) -> None:
    with get_session() as session:
        user = get_user_by_telegram_id(session, inline_query.from_user.id)
        if user is None:
            results = []
        else:
            events = get_upcoming_hosted_events(
                session, user.id, limit=INLINE_RESULTS_LIMIT
            )
            results = [
                _inline_result(event)
                for event in filter_shareable_events(events, inline_query.query)
            ]
    await inline_query.answer(results, cache_time=10)


async def broadcast(
    bot: Bot,
    chat_ids: Sequence[int],
    text: str,
    *,
    batch_size: int = BROADCAST_BATCH_SIZE,
    pause: float = BROADCAST_PAUSE_SECONDS,
) -> tuple[int, int]:
    """Send ``text`` to every chat, pausing after each batch for rate limits."""
    sent = failed = 0
    for index, chat_id in enumerate(chat_ids, start=1):
        try:
            await bot.send_message(chat_id, text)
        except TelegramAPIError as exc:
            failed += 1
            logger.warning("Broadcast to %s failed: %s", chat_id, exc)
        else:
            sent += 1
        if index % batch_size == 0:
            await asyncio.sleep(pause)
    return sent, failed


@router.message(Command("broadcast"))
async def handle_broadcast(message: Message, command: CommandObject, bot: Bot) -> None:
    if message.from_user is None or not is_admin(message.from_user.id):
        return
    text = (command.args or "").strip()
    if not text:
        await message.answer(messages.BROADCAST_USAGE)
        return

    with get_session() as session:
        chat_ids = get_all_telegram_ids(session)
    await message.answer(messages.broadcast_started(len(chat_ids)))
    sent, failed = await broadcast(bot, chat_ids, text)
    logger.info("Broadcast by %s: %s sent, %s failed", message.from_user.id, sent, failed)
    await message.answer(messages.broadcast_finished(sent, failed))


@router.message(Command("send_reminders"))
async def handle_send_reminders(message: Message, bot: Bot) -> None:
    if message.from_user is None or not is_admin(message.from_user.id):
        return
    await send_reminders(bot)
    await message.answer(messages.REMINDERS_SENT)


# Feedback handlers stay last so commands sent while waiting still reach
# their own handlers.


@router.message(Command("feedback"))
async def handle_feedback_command(message: Message, state: FSMContext) -> None:
    if message.from_user is None:
        return
    await state.set_state(FeedbackForm.waiting)
    await message.answer(messages.FEEDBACK_PROMPT)


@router.message(FeedbackForm.waiting, F.text)
async def handle_feedback_text(message: Message, state: FSMContext, bot: Bot) -> None:
    await _take_feedback(message, state, bot, text=message.text, kind="text")


@router.message(FeedbackForm.waiting, F.voice | F.audio)
async def handle_feedback_voice(message: Message, state: FSMContext, bot: Bot) -> None:
    await _take_feedback(
        message, state, bot, text=messages.VOICE_FEEDBACK_TEXT, kind="voice"
    )


async def _take_feedback(
    message: Message, state: FSMContext, bot: Bot, *, text: str, kind: str
) -> None:
    await state.clear()
    from_user = message.from_user
    if from_user is None:
        return
    with get_session() as session:
        user = _remember_user(session, from_user)
        save_feedback(session, user, telegram_id=from_user.id, text=text, kind=kind)
    await message.answer(messages.FEEDBACK_THANKS)
    logger.info("Feedback (%s) from %s", kind, from_user.id)

    header = messages.feedback_header(
        from_user.first_name,
        from_user.username,
        text if kind == "text" else None,
    )
    for admin_id in sorted(settings.admin_ids):
        await notify(bot, admin_id, header)
        if kind != "voice":
            continue
        try:
            await bot.forward_message(
                chat_id=admin_id,
                from_chat_id=message.chat.id,
                message_id=message.message_id,
            )
        except TelegramAPIError as exc:
            logger.warning("Failed to forward voice feedback to %s: %s", admin_id, exc)
