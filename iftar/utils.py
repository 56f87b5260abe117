"""Utility helpers for the iftar planner."""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

_MONTHS_GENITIVE = (
    "января",
    "февраля",
    "марта",
    "апреля",
    "мая",
    "июня",
    "июля",
    "августа",
    "сентября",
    "октября",
    "ноября",
    "декабря",
)


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def today() -> date:
    """Return the current UTC calendar date."""

    return utcnow().date()


def tomorrow() -> date:
    return today() + timedelta(days=1)


def normalize_username(value: str | None) -> str:
    """Return a lookup key for a Telegram handle: no ``@``, lower case."""

    return (value or "").strip().lstrip("@").strip().lower()


def parse_date(raw: str | date) -> date:
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(raw.strip().split("T", 1)[0])


def parse_time(raw: str | time | None) -> time | None:
    """Parse ``HH:MM`` or ``HH:MM:SS``; empty values mean no time."""

    if raw is None or isinstance(raw, time):
        return raw
    cleaned = raw.strip()
    if not cleaned:
        return None
    return time.fromisoformat(cleaned)


def format_time(value: time | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%H:%M")


def format_day_month(value: date) -> str:
    """Render a date the way Russian speakers write it: ``1 марта``."""

    return f"{value.day} {_MONTHS_GENITIVE[value.month - 1]}"


def ramadan_day(value: date, ramadan_start: date) -> int:
    """Return the Ramadan day number, day 1 being ``ramadan_start``."""

    return (value - ramadan_start).days + 1
