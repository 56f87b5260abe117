from __future__ import annotations

import asyncio
from datetime import date
from types import SimpleNamespace

from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import StorageKey
from aiogram.fsm.storage.memory import MemoryStorage
from fastapi.testclient import TestClient

from iftar import api, bot, crud, messages
from iftar.models import Event


class FakeBot:
    def __init__(self, blocked: set[int] | None = None) -> None:
        self.blocked = blocked or set()
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id: int, text: str) -> None:
        if chat_id in self.blocked:
            raise TelegramAPIError(method=None, message="Forbidden")
        self.sent.append((chat_id, text))


class FakeCallback:
    def __init__(self, data: str, from_user) -> None:
        self.data = data
        self.from_user = from_user
        self.message = None
        self.answers: list[tuple[str | None, bool | None]] = []

    async def answer(self, text: str | None = None, show_alert: bool | None = None):
        self.answers.append((text, show_alert))


class FakeMessage:
    def __init__(self, from_user) -> None:
        self.from_user = from_user
        self.replies: list[str] = []

    async def answer(self, text: str, reply_markup=None) -> None:
        self.replies.append(text)


def _telegram_user(telegram_id: int, username: str):
    return SimpleNamespace(
        id=telegram_id, username=username, first_name=username.title(), last_name=None
    )


def _hosted_event(session, make_user, today):
    host = make_user("host", telegram_id=1)
    event = crud.create_event(session, host_id=host.id, date=today, location="Дом")
    session.commit()
    return event


def test_callback_records_answer_and_notifies_host_once(session, make_user, today):
    event = _hosted_event(session, make_user, today)
    fake_bot = FakeBot()
    guest = _telegram_user(2, "guest")

    first = FakeCallback(f"rsvp:{event.id}:accepted:2", guest)
    asyncio.run(bot.handle_rsvp_callback(first, fake_bot))
    second = FakeCallback(f"rsvp:{event.id}:accepted:2", guest)
    asyncio.run(bot.handle_rsvp_callback(second, fake_bot))

    assert first.answers == [("✅ Отлично! Ты придёшь вдвоём.", True)]
    assert second.answers == [(messages.ALREADY_RECORDED, False)]
    assert len(fake_bot.sent) == 1
    assert fake_bot.sent[0][0] == 1
    assert "придёт (2 чел.)" in fake_bot.sent[0][1]

    user = crud.get_user_by_telegram_id(session, 2)
    invitation = crud.get_invitation_for_guest(session, event.id, user.id)
    assert (invitation.status, invitation.guest_count) == ("accepted", 2)


def test_callback_by_host_does_not_notify_self(session, make_user, today):
    event = _hosted_event(session, make_user, today)
    fake_bot = FakeBot()

    callback = FakeCallback(f"rsvp:{event.id}:declined:0", _telegram_user(1, "host"))
    asyncio.run(bot.handle_rsvp_callback(callback, fake_bot))

    assert callback.answers == [("❌ Понял, ты не сможешь.", True)]
    assert fake_bot.sent == []


def test_callback_for_missing_event_or_bad_status(session, make_user, today):
    event = _hosted_event(session, make_user, today)
    fake_bot = FakeBot()
    guest = _telegram_user(2, "guest")

    missing = FakeCallback("rsvp:nope:accepted:1", guest)
    asyncio.run(bot.handle_rsvp_callback(missing, fake_bot))
    invalid = FakeCallback(f"rsvp:{event.id}:party:1", guest)
    asyncio.run(bot.handle_rsvp_callback(invalid, fake_bot))

    assert missing.answers == [(messages.EVENT_NOT_FOUND, True)]
    assert invalid.answers == [(messages.ANSWER_INVALID, True)]
    assert fake_bot.sent == []


def test_start_with_event_link_creates_pending_invitation(session, make_user, today):
    event = _hosted_event(session, make_user, today)
    message = FakeMessage(_telegram_user(2, "guest"))
    command = SimpleNamespace(args=f"event_{event.id}")

    asyncio.run(bot.handle_start(message, command, FakeBot()))

    assert "Приглашение на ифтар" in message.replies[0]
    user = crud.get_user_by_telegram_id(session, 2)
    invitation = crud.get_invitation_for_guest(session, event.id, user.id)
    assert invitation.status == "pending"


def test_start_with_web_answer_notifies_host(session, make_user, today):
    event = _hosted_event(session, make_user, today)
    message = FakeMessage(_telegram_user(2, "guest"))
    command = SimpleNamespace(args=f"rsvp_{event.id}_accepted_1")
    fake_bot = FakeBot()

    asyncio.run(bot.handle_start(message, command, fake_bot))

    assert "Отлично!" in message.replies[0]
    assert [chat_id for chat_id, _ in fake_bot.sent] == [1]


def test_start_without_payload_greets(session):
    message = FakeMessage(_telegram_user(2, "guest"))

    asyncio.run(bot.handle_start(message, SimpleNamespace(args=None), FakeBot()))

    assert message.replies == [messages.GREETING]


def test_filter_shareable_events_matches_location_or_date():
    events = [
        Event(id="a", date=date(2026, 3, 1), location="Дом Айгерим"),
        Event(id="b", date=date(2026, 3, 5), location="Ресторан"),
    ]

    assert [e.id for e in bot.filter_shareable_events(events, "")] == ["a", "b"]
    assert [e.id for e in bot.filter_shareable_events(events, "дом")] == ["a"]
    assert [e.id for e in bot.filter_shareable_events(events, "03-05")] == ["b"]


def test_broadcast_counts_failures():
    fake_bot = FakeBot(blocked={2})

    sent, failed = asyncio.run(
        bot.broadcast(fake_bot, [1, 2, 3], "Рамадан мубарак", batch_size=2, pause=0)
    )

    assert (sent, failed) == (2, 1)
    assert [chat_id for chat_id, _ in fake_bot.sent] == [1, 3]


def test_is_admin_uses_configured_ids(monkeypatch):
    monkeypatch.setattr(
        bot, "settings", SimpleNamespace(admin_ids=frozenset({42}))
    )

    assert bot.is_admin(42)
    assert not bot.is_admin(7)
    assert not bot.is_admin(None)


class FakeFeedbackBot(FakeBot):
    def __init__(self) -> None:
        super().__init__()
        self.forwarded: list[tuple[int, int, int]] = []

    async def forward_message(self, chat_id: int, from_chat_id: int, message_id: int):
        self.forwarded.append((chat_id, from_chat_id, message_id))


def _feedback_message(text: str | None = None):
    message = FakeMessage(_telegram_user(2, "guest"))
    message.text = text
    message.chat = SimpleNamespace(id=2)
    message.message_id = 77
    return message


def _fsm_context() -> FSMContext:
    return FSMContext(
        storage=MemoryStorage(), key=StorageKey(bot_id=1, chat_id=2, user_id=2)
    )


def test_bot_contact_keeps_avatar_from_mini_app(session, make_user, today):
    event = _hosted_event(session, make_user, today)
    with TestClient(api.app) as client:
        client.post(
            "/api/users",
            json={"id": 2, "username": "guest", "photo_url": "https://t.me/a.jpg"},
        )

    message = FakeMessage(_telegram_user(2, "guest"))
    asyncio.run(
        bot.handle_start(message, SimpleNamespace(args=f"event_{event.id}"), FakeBot())
    )

    user = crud.get_user_by_telegram_id(session, 2)
    assert user.avatar_url == "https://t.me/a.jpg"
    assert user.first_name == "Guest"


def test_feedback_command_waits_for_next_message():
    state = _fsm_context()
    message = _feedback_message("/feedback")

    asyncio.run(bot.handle_feedback_command(message, state))

    assert message.replies == [messages.FEEDBACK_PROMPT]
    assert asyncio.run(state.get_state()) == bot.FeedbackForm.waiting.state


def test_text_feedback_is_saved_and_sent_to_admins(session, monkeypatch):
    monkeypatch.setattr(bot, "settings", SimpleNamespace(admin_ids=frozenset({900, 901})))
    state = _fsm_context()
    asyncio.run(state.set_state(bot.FeedbackForm.waiting))
    message = _feedback_message("Добавьте <тёмную> тему")
    fake_bot = FakeFeedbackBot()

    asyncio.run(bot.handle_feedback_text(message, state, fake_bot))

    assert message.replies == [messages.FEEDBACK_THANKS]
    assert asyncio.run(state.get_state()) is None
    saved = crud.list_feedback(session)
    assert [(entry.kind, entry.text, entry.telegram_id) for entry in saved] == [
        ("text", "Добавьте <тёмную> тему", 2)
    ]
    assert saved[0].user_id == crud.get_user_by_telegram_id(session, 2).id
    assert [chat_id for chat_id, _ in fake_bot.sent] == [900, 901]
    assert fake_bot.sent[0][1] == (
        "💬 Отзыв от Guest (@guest):\n\nДобавьте &lt;тёмную&gt; тему"
    )
    assert fake_bot.forwarded == []


def test_voice_feedback_is_forwarded_to_admins(session, monkeypatch):
    monkeypatch.setattr(bot, "settings", SimpleNamespace(admin_ids=frozenset({900})))
    state = _fsm_context()
    asyncio.run(state.set_state(bot.FeedbackForm.waiting))
    message = _feedback_message()
    fake_bot = FakeFeedbackBot()

    asyncio.run(bot.handle_feedback_voice(message, state, fake_bot))

    assert message.replies == [messages.FEEDBACK_THANKS]
    assert crud.list_feedback(session)[0].text == messages.VOICE_FEEDBACK_TEXT
    assert fake_bot.sent == [(900, "💬 Голосовой отзыв от Guest (@guest)")]
    assert fake_bot.forwarded == [(900, 2, 77)]


def test_feedback_handlers_only_fire_while_waiting():
    handlers = {
        handler.callback: handler for handler in bot.router.message.handlers
    }

    for callback in (bot.handle_feedback_text, bot.handle_feedback_voice):
        waiting_filter = handlers[callback].filters[0].callback
        assert waiting_filter(None, raw_state=None) is False
        assert waiting_filter(None, raw_state=bot.FeedbackForm.waiting.state) is True
