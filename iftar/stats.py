"""Read-only usage analytics for the admin dashboard and CLI."""

from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from .models import Event, Invitation, User
from .utils import format_time, today as utc_today


def _count(session: Session, stmt) -> int:
    return int(session.scalar(stmt) or 0)


def collect_counts(session: Session) -> dict[str, int]:
    return {
        "total_users": _count(session, select(func.count(User.id))),
        "total_events": _count(session, select(func.count(Event.id))),
        "unique_hosts": _count(
            session,
            select(func.count(func.distinct(Event.host_id))).where(
                Event.host_id.is_not(None)
            ),
        ),
        "total_invitations": _count(session, select(func.count(Invitation.id))),
        "accepted_rsvps": _count(
            session,
            select(func.count(Invitation.id)).where(Invitation.status == "accepted"),
        ),
    }


def upcoming_events(
    session: Session, *, limit: int = 10, today: date | None = None
) -> list[dict[str, Any]]:
    """Events from ``today`` on with host details and invitation tallies."""
    accepted = func.sum(case((Invitation.status == "accepted", 1), else_=0))
    stmt = (
        select(
            Event,
            User.first_name,
            User.username,
            func.count(Invitation.id),
            accepted,
        )
        .outerjoin(User, Event.host_id == User.id)
        .outerjoin(Invitation, Invitation.event_id == Event.id)
        .where(Event.date >= (today or utc_today()))
        .group_by(Event.id, User.first_name, User.username)
        .order_by(Event.date.asc())
        .limit(limit)
    )
    rows = []
    for event, host_name, host_username, invite_count, accepted_count in session.execute(
        stmt
    ):
        rows.append(
            {
                "id": event.id,
                "date": event.date.isoformat(),
                "iftar_time": format_time(event.iftar_time),
                "location": event.location,
                "host_name": host_name,
                "host_username": host_username,
                "invite_count": int(invite_count or 0),
                "accepted_count": int(accepted_count or 0),
            }
        )
    return rows


def recent_users(session: Session, *, limit: int = 10) -> list[dict[str, Any]]:
    stmt = select(User).order_by(User.created_at.desc()).limit(limit)
    return [
        {
            "first_name": user.first_name,
            "username": user.username,
            "created_at": user.created_at.isoformat(),
        }
        for user in session.scalars(stmt)
    ]


def recent_events(session: Session, *, limit: int = 10) -> list[dict[str, Any]]:
    stmt = (
        select(Event, User.first_name, User.username)
        .outerjoin(User, Event.host_id == User.id)
        .order_by(Event.created_at.desc())
        .limit(limit)
    )
    return [
        {
            "date": event.date.isoformat(),
            "location": event.location,
            "created_at": event.created_at.isoformat(),
            "host_name": host_name,
            "host_username": host_username,
        }
        for event, host_name, host_username in session.execute(stmt)
    ]


def collect_stats(
    session: Session, *, limit: int = 10, today: date | None = None
) -> dict[str, Any]:
    return {
        "counts": collect_counts(session),
        "upcoming_events": upcoming_events(session, limit=limit, today=today),
        "recent_users": recent_users(session, limit=limit),
        "recent_events": recent_events(session, limit=limit),
    }
