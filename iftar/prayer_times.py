"""Prayer-times lookup for arbitrary coordinates, cached per location and year."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Hashable

import httpx

from .config import settings

logger = logging.getLogger("uvicorn.error")

PrayerTable = dict[str, dict[str, str]]


class TTLCache:
    """A small bounded mapping whose entries expire after ``ttl``.

    When full, the oldest inserted entry is evicted first. ``clock`` returns
    seconds and exists so tests can move time forward.
    """

    def __init__(
        self,
        ttl: timedelta,
        *,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl.total_seconds()
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()

    def get(self, key: Hashable) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _clock_reading(raw: str | None) -> str | None:
    """Strip the timezone suffix the calendar API appends: ``05:53 (+05)``."""
    if not raw:
        return None
    return raw.split(" ", 1)[0][:5]


def _iso_from_gregorian(raw: str) -> str:
    return datetime.strptime(raw, "%d-%m-%Y").date().isoformat()


def parse_calendar(payload: dict[str, Any]) -> PrayerTable:
    """Turn a calendar API response into ``{YYYY-MM-DD: {suhoor, iftar}}``.

    A whole-year response maps month numbers to day lists; a single month is
    just the list.
    """
    data = payload.get("data") or []
    if isinstance(data, dict):
        days = [day for month in sorted(data, key=int) for day in data[month]]
    else:
        days = list(data)

    table: PrayerTable = {}
    for day in days:
        timings = day.get("timings") or {}
        gregorian = ((day.get("date") or {}).get("gregorian") or {}).get("date")
        suhoor = _clock_reading(timings.get("Fajr"))
        iftar = _clock_reading(timings.get("Maghrib"))
        if not gregorian or not suhoor or not iftar:
            continue
        table[_iso_from_gregorian(gregorian)] = {"suhoor": suhoor, "iftar": iftar}
    return table


class PrayerTimesClient:
    def __init__(
        self,
        *,
        base_url: str,
        method: int,
        cache: TTLCache,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.method = method
        self.cache = cache
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def cache_key(lat: float, lng: float, year: int) -> tuple[float, float, int]:
        return (round(lat, 2), round(lng, 2), year)

    def fetch(self, lat: float, lng: float, year: int) -> PrayerTable:
        key = self.cache_key(lat, lng, year)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        params = {"latitude": lat, "longitude": lng, "method": self.method}
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            response = client.get(f"{self.base_url}/{year}", params=params)
            response.raise_for_status()
            table = parse_calendar(response.json())

        logger.info("Fetched %s prayer-time days for %s", len(table), key)
        if table:
            self.cache.set(key, table)
        return table


def build_client(transport: httpx.BaseTransport | None = None) -> PrayerTimesClient:
    cache = TTLCache(
        settings.prayer_cache_ttl, max_entries=settings.prayer_cache_max_entries
    )
    return PrayerTimesClient(
        base_url=settings.prayer_times_url,
        method=settings.prayer_times_method,
        cache=cache,
        timeout=settings.http_timeout_seconds,
        transport=transport,
    )
