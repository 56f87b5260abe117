"""CRUD helpers for users, events, invitations, and feedback."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, contains_eager, joinedload, selectinload

from .cities import is_valid_city
from .models import Event, Feedback, Invitation, User
from .utils import normalize_username, parse_date, parse_time, today as utc_today, utcnow

RSVP_STATUSES = {"accepted", "declined", "maybe"}
ACTIVE_INVITATION_STATUSES = ("accepted", "pending", "maybe")
MAX_GUEST_COUNT = 10
UNKNOWN_HOST_LABEL = "кто-то"

_UNSET: Any = object()


def _now() -> datetime:
    return utcnow()


def _insert(session: Session, model):
    """Return a dialect-specific INSERT so upserts stay single statements."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise RuntimeError(f"Upserts are not supported on {dialect!r}")


def _normalize_rsvp_status(status: str | None) -> str:
    normalized = (status or "").strip().lower()
    if normalized not in RSVP_STATUSES:
        raise ValueError("Invalid status")
    return normalized


def _clamp_guest_count(raw: int | str | None) -> int:
    try:
        value = int(raw or 1)
    except (TypeError, ValueError):
        value = 1
    return max(1, min(value, MAX_GUEST_COUNT))


# Users


def get_or_create_user(
    session: Session,
    *,
    telegram_id: int,
    username: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    avatar_url: str | None = _UNSET,
) -> User:
    """Upsert a user by Telegram id; profile fields are last-write-wins.

    Leaving out ``avatar_url`` keeps whatever photo is already stored, since
    bot updates carry no photo URL.
    """
    now = _now()
    profile = {
        "username": username,
        "first_name": first_name,
        "last_name": last_name,
    }
    if avatar_url is not _UNSET:
        profile["avatar_url"] = avatar_url
    stmt = (
        _insert(session, User)
        .values(telegram_id=telegram_id, created_at=now, updated_at=now, **profile)
        .on_conflict_do_update(
            index_elements=["telegram_id"],
            set_={**profile, "updated_at": now},
        )
    )
    session.execute(stmt)
    return session.scalars(
        select(User)
        .where(User.telegram_id == telegram_id)
        .execution_options(populate_existing=True)
    ).one()


def get_user(session: Session, user_id: str) -> User | None:
    return session.get(User, user_id)


def get_user_by_username(session: Session, username: str | None) -> User | None:
    key = normalize_username(username)
    if not key:
        return None
    stmt = select(User).where(func.lower(User.username) == key).limit(1)
    return session.scalars(stmt).first()


def get_user_by_telegram_id(session: Session, telegram_id: int) -> User | None:
    stmt = select(User).where(User.telegram_id == telegram_id)
    return session.scalars(stmt).first()


def get_users_by_telegram_ids(
    session: Session, telegram_ids: Iterable[int]
) -> Sequence[User]:
    ids = list(telegram_ids or [])
    if not ids:
        return []
    stmt = select(User).where(User.telegram_id.in_(ids))
    return session.scalars(stmt).all()


def get_all_telegram_ids(session: Session) -> list[int]:
    stmt = select(User.telegram_id).order_by(User.created_at.asc())
    return list(session.scalars(stmt))


def update_user_city(
    session: Session,
    user: User,
    *,
    city: str,
    lat: float | None = None,
    lng: float | None = None,
) -> User:
    """Set the user's home city; coordinates are replaced together with it."""
    if not is_valid_city(city):
        raise ValueError("Invalid city")
    user.city = city.strip().lower()
    user.city_lat = lat
    user.city_lng = lng
    user.updated_at = _now()
    session.add(user)
    session.flush()
    return user


# Events


def create_event(
    session: Session,
    *,
    host_id: str | None,
    date: str | date,
    iftar_time: str | time | None = None,
    location: str | None = None,
    address: str | None = None,
    notes: str | None = None,
    is_host_mode: bool = True,
) -> Event:
    """Create and persist a new event.

    In guest mode the creator is recording somebody else's invitation, so they
    are added to the event as an accepted guest.
    """
    event = Event(
        date=parse_date(date),
        iftar_time=parse_time(iftar_time),
        location=location,
        address=address,
        notes=notes,
        is_host_mode=is_host_mode,
    )
    host = session.get(User, host_id) if host_id else None
    if host is not None:
        event.host = host
    else:
        event.host_id = host_id
    session.add(event)
    session.flush()
    if not is_host_mode and host_id:
        ensure_invitation(
            session, event_id=event.id, guest_id=host_id, status="accepted"
        )
    return event


def get_event(session: Session, event_id: str) -> Event | None:
    stmt = select(Event).options(joinedload(Event.host)).where(Event.id == event_id)
    return session.scalars(stmt).first()


def get_event_details(session: Session, event_id: str) -> Event | None:
    """Return an event with its host and every invitation's guest loaded."""
    stmt = (
        select(Event)
        .options(
            joinedload(Event.host),
            selectinload(Event.invitations).joinedload(Invitation.guest),
        )
        .where(Event.id == event_id)
    )
    return session.scalars(stmt).first()


def delete_event(session: Session, event_id: str) -> bool:
    """Delete an event; its invitations go with it."""
    event = session.get(Event, event_id)
    if event is None:
        return False
    session.delete(event)
    session.flush()
    return True


def get_events_on(session: Session, day: date) -> Sequence[Event]:
    stmt = (
        select(Event)
        .options(
            joinedload(Event.host),
            selectinload(Event.invitations).joinedload(Invitation.guest),
        )
        .where(Event.date == day)
        .order_by(Event.created_at.asc())
    )
    return session.scalars(stmt).all()


def get_upcoming_hosted_events(
    session: Session,
    user_id: str,
    *,
    limit: int = 10,
    today: date | None = None,
) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.host_id == user_id, Event.date >= (today or utc_today()))
        .order_by(Event.date.asc())
        .limit(limit)
    )
    return session.scalars(stmt).all()


def merge_user_events(
    hosted: Iterable[Event], invited: Iterable[Invitation]
) -> list[tuple[Event, Invitation | None]]:
    """Collapse hosted and invited events into one list keyed by event id.

    Later entries replace earlier ones, so an invitation to a self-hosted event
    wins over the hosted copy. The result is ordered by calendar date.
    """
    merged: dict[str, tuple[Event, Invitation | None]] = {}
    for event in hosted:
        merged[event.id] = (event, None)
    for invitation in invited:
        event = invitation.event
        if event is None:
            continue
        merged[event.id] = (event, invitation)
    return sorted(merged.values(), key=lambda pair: pair[0].date)


def get_user_events(
    session: Session, user_id: str, *, today: date | None = None
) -> list[tuple[Event, Invitation | None]]:
    """Return every event relevant to a user, each exactly once.

    Hosted events are limited to ``today`` and later; invitations are not
    date-filtered, so past invitations stay visible.
    """
    floor = today or utc_today()
    hosted = session.scalars(
        select(Event)
        .options(joinedload(Event.host))
        .where(Event.host_id == user_id, Event.date >= floor)
        .order_by(Event.date.asc())
    ).all()
    invited = session.scalars(
        select(Invitation)
        .options(joinedload(Invitation.event).joinedload(Event.host))
        .where(Invitation.guest_id == user_id)
        .order_by(Invitation.created_at.asc())
    ).all()
    return merge_user_events(hosted, invited)


def check_collisions(
    session: Session, usernames: Iterable[str], day: str | date
) -> list[dict[str, str]]:
    """Report guests who are already committed to an iftar on ``day``.

    At most one collision is reported per guest; unknown usernames are skipped.
    """
    target = parse_date(day)
    collisions: list[dict[str, str]] = []
    for username in usernames:
        user = get_user_by_username(session, username)
        if user is None:
            continue
        stmt = (
            select(Invitation)
            .join(Invitation.event)
            .options(contains_eager(Invitation.event).joinedload(Event.host))
            .where(
                Invitation.guest_id == user.id,
                Invitation.status.in_(ACTIVE_INVITATION_STATUSES),
                Event.date == target,
            )
            .limit(1)
        )
        clash = session.scalars(stmt).first()
        if clash is None:
            continue
        host = clash.event.host
        collisions.append(
            {
                "username": username,
                "host_username": (host.username if host else None)
                or UNKNOWN_HOST_LABEL,
                "status": clash.status or "pending",
            }
        )
    return collisions


# Invitations


def get_invitation(session: Session, invitation_id: str) -> Invitation | None:
    return session.get(Invitation, invitation_id)


def get_invitation_for_guest(
    session: Session, event_id: str, guest_id: str
) -> Invitation | None:
    stmt = (
        select(Invitation)
        .where(Invitation.event_id == event_id, Invitation.guest_id == guest_id)
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).first()


def ensure_invitation(
    session: Session, *, event_id: str, guest_id: str, status: str = "pending"
) -> Invitation:
    """Insert the (event, guest) invitation unless it already exists."""
    stmt = (
        _insert(session, Invitation)
        .values(
            event_id=event_id,
            guest_id=guest_id,
            status=status,
            guest_count=1,
            created_at=_now(),
        )
        .on_conflict_do_nothing(index_elements=["event_id", "guest_id"])
    )
    session.execute(stmt)
    return get_invitation_for_guest(session, event_id, guest_id)


def invite_usernames(
    session: Session, event_id: str, usernames: Iterable[str]
) -> list[Invitation]:
    """Invite every known username; handles nobody has used yet are skipped."""
    invitations: list[Invitation] = []
    for username in usernames or []:
        user = get_user_by_username(session, username)
        if user is None:
            continue
        invitations.append(
            ensure_invitation(session, event_id=event_id, guest_id=user.id)
        )
    return invitations


def respond_to_invitation(
    session: Session,
    invitation: Invitation,
    *,
    status: str,
    guest_count: int | None = None,
) -> Invitation:
    """Record a guest's answer. Party size only survives an acceptance."""
    normalized = _normalize_rsvp_status(status)
    if normalized == "accepted":
        invitation.guest_count = _clamp_guest_count(
            guest_count if guest_count is not None else invitation.guest_count
        )
    else:
        invitation.guest_count = 1
    invitation.status = normalized
    invitation.responded_at = _now()
    session.add(invitation)
    session.flush()
    return invitation


def record_rsvp(
    session: Session,
    *,
    event_id: str,
    guest_id: str,
    status: str,
    guest_count: int | None = 1,
) -> tuple[Invitation, bool]:
    """Upsert a guest's answer and report whether anything actually changed."""
    normalized = _normalize_rsvp_status(status)
    count = _clamp_guest_count(guest_count) if normalized == "accepted" else 1
    existing = get_invitation_for_guest(session, event_id, guest_id)
    changed = (
        existing is None
        or existing.status != normalized
        or (existing.guest_count or 1) != count
    )
    now = _now()
    stmt = (
        _insert(session, Invitation)
        .values(
            event_id=event_id,
            guest_id=guest_id,
            status=normalized,
            guest_count=count,
            responded_at=now,
            created_at=now,
        )
        .on_conflict_do_update(
            index_elements=["event_id", "guest_id"],
            set_={"status": normalized, "guest_count": count, "responded_at": now},
        )
    )
    session.execute(stmt)
    return get_invitation_for_guest(session, event_id, guest_id), changed


def delete_invitation(session: Session, invitation_id: str) -> bool:
    invitation = session.get(Invitation, invitation_id)
    if invitation is None:
        return False
    session.delete(invitation)
    session.flush()
    return True


# Feedback


def save_feedback(
    session: Session, user: User | None, *, telegram_id: int, text: str, kind: str = "text"
) -> Feedback:
    feedback = Feedback(
        user_id=user.id if user is not None else None,
        telegram_id=telegram_id,
        kind=kind,
        text=text,
    )
    session.add(feedback)
    session.flush()
    return feedback


def list_feedback(session: Session, *, limit: int = 50) -> Sequence[Feedback]:
    stmt = select(Feedback).order_by(Feedback.created_at.desc()).limit(limit)
    return session.scalars(stmt).all()
