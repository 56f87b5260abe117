"""Development helpers for populating fake users, iftars, and RSVPs."""

from __future__ import annotations

import random
from datetime import date, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .cities import CITIES, get_day_times
from .crud import create_event, ensure_invitation, get_or_create_user, respond_to_invitation
from .database import get_session
from .models import User
from .storage import init_db
from .utils import today

_venues = [
    "Дома",
    "У родителей",
    "Мечеть Хазрет Султан",
    "Кафе Шафран",
    "Ресторан Дастархан",
    "Офис",
    "Дача",
]
_notes = [
    "Приходите пораньше, будет плов",
    "Возьмите с собой финики",
    "Будем читать Коран после ифтара",
    "",
    "",
]
_answers = ["accepted", "accepted", "accepted", "maybe", "declined", None]


def seed_fake_data(
    *,
    user_count: int = 12,
    event_count: int = 8,
    invitations_per_event: int = 4,
    start: date | None = None,
    seed: int | None = None,
) -> dict[str, int]:
    """Populate the database with synthetic users, events, and invitations."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if invitations_per_event < 0:
        raise ValueError("invitations_per_event must be >= 0")

    init_db()
    fake = Faker("ru_RU")
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)
    first_day = start or today()
    stats = {"users": 0, "events": 0, "invitations": 0}

    with get_session() as session:
        users = [_create_user(session, fake, rng) for _ in range(user_count)]
        stats["users"] = len(users)
        for _ in range(event_count):
            host = rng.choice(users)
            stats["invitations"] += _create_event(
                session,
                fake,
                rng,
                host=host,
                guests=[user for user in users if user.id != host.id],
                day=first_day + timedelta(days=rng.randint(0, 29)),
                invitations=invitations_per_event,
            )
            stats["events"] += 1
    return stats


def _create_user(session: Session, fake: Faker, rng: random.Random) -> User:
    user = get_or_create_user(
        session,
        telegram_id=rng.randint(10_000_000, 9_999_999_999),
        username=fake.unique.user_name(),
        first_name=fake.first_name(),
        last_name=fake.last_name(),
    )
    user.city = rng.choice(CITIES).id
    return user


def _create_event(
    session: Session,
    fake: Faker,
    rng: random.Random,
    *,
    host: User,
    guests: list[User],
    day: date,
    invitations: int,
) -> int:
    event = create_event(
        session,
        host_id=host.id,
        date=day,
        iftar_time=get_day_times(day, host.city or "astana").iftar,
        location=rng.choice(_venues),
        address=fake.street_address(),
        notes=rng.choice(_notes) or None,
    )
    created = 0
    for guest in rng.sample(guests, k=min(invitations, len(guests))):
        invitation = ensure_invitation(session, event_id=event.id, guest_id=guest.id)
        created += 1
        answer = rng.choice(_answers)
        if answer is not None:
            respond_to_invitation(
                session,
                invitation,
                status=answer,
                guest_count=rng.randint(1, 3),
            )
    return created
