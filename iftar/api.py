"""FastAPI application for the iftar planner mini-app."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cities import CITIES, get_city, get_day_times, is_ramadan_date
from .config import settings
from .crud import (
    check_collisions,
    create_event,
    delete_event,
    delete_invitation,
    ensure_invitation,
    get_event,
    get_event_details,
    get_invitation,
    get_or_create_user,
    get_user,
    get_user_by_username,
    get_user_events,
    get_users_by_telegram_ids,
    invite_usernames,
    respond_to_invitation,
    update_user_city,
)
from .database import SessionLocal
from .models import Event, Invitation, User
from .prayer_times import PrayerTimesClient, build_client
from .stats import collect_stats
from .storage import init_db
from .utils import format_time, parse_date, ramadan_day

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("iftar")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Iftar planner", version=APP_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_request_timing(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s - %d ms", request.method, request.url.path, elapsed_ms)
    return response


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_prayer_times_client() -> PrayerTimesClient:
    return build_client()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(
            str(part) for part in error.get("loc", ()) if part not in {"body", "query", "path"}
        )
        message = error.get("msg", "Invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _error(exc.status_code, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(400, _validation_message(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(400, str(exc) or "Invalid request")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return _error(500, str(exc))


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _serialize_user(user: User | None):
    if user is None:
        return None
    return {
        "id": user.id,
        "telegram_id": user.telegram_id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "avatar_url": user.avatar_url,
        "city": user.city,
        "city_lat": user.city_lat,
        "city_lng": user.city_lng,
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def _serialize_invitation(invitation: Invitation, *, include_guest: bool = False):
    payload = {
        "id": invitation.id,
        "event_id": invitation.event_id,
        "guest_id": invitation.guest_id,
        "status": invitation.status,
        "guest_count": invitation.guest_count,
        "responded_at": _iso(invitation.responded_at),
        "created_at": _iso(invitation.created_at),
    }
    if include_guest:
        payload["guest"] = _serialize_user(invitation.guest)
    return payload


def _serialize_event(event: Event, *, include_invitations: bool = False):
    payload = {
        "id": event.id,
        "host_id": event.host_id,
        "date": event.date.isoformat(),
        "iftar_time": format_time(event.iftar_time),
        "location": event.location,
        "address": event.address,
        "notes": event.notes,
        "is_host_mode": event.is_host_mode,
        "created_at": _iso(event.created_at),
        "updated_at": _iso(event.updated_at),
        "host": _serialize_user(event.host),
    }
    if include_invitations:
        payload["invitations"] = [
            _serialize_invitation(invitation, include_guest=True)
            for invitation in event.invitations
        ]
    return payload


def _serialize_user_event(event: Event, invitation: Invitation | None):
    payload = _serialize_event(event)
    if invitation is not None:
        payload["invitation_status"] = invitation.status
        payload["invitation_id"] = invitation.id
    return payload


def _ensure_event(db: Session, event_id: str) -> Event:
    event = get_event(db, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


class UserPayload(BaseModel):
    id: int = Field(..., description="Telegram user id")
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    photo_url: str | None = None


class CollisionPayload(BaseModel):
    usernames: list[str] = Field(default_factory=list)
    date: str = Field(..., description="YYYY-MM-DD")


class EventCreatePayload(BaseModel):
    host_id: str
    date: str = Field(..., description="YYYY-MM-DD")
    iftar_time: str | None = Field(None, description="HH:MM")
    location: str | None = None
    address: str | None = None
    notes: str | None = None
    is_host_mode: bool = True
    usernames: list[str] = Field(default_factory=list)


class InvitePayload(BaseModel):
    usernames: list[str] = Field(default_factory=list)


class EnsureInvitationPayload(BaseModel):
    guest_id: str


class InvitationUpdatePayload(BaseModel):
    status: str
    guest_count: int | None = None


class TelegramIdsPayload(BaseModel):
    telegram_ids: list[int] = Field(default_factory=list)


class CityPayload(BaseModel):
    city: str
    lat: float | None = None
    lng: float | None = None


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/users")
def api_upsert_user(payload: UserPayload, db: Session = Depends(get_db)):
    user = get_or_create_user(
        db,
        telegram_id=payload.id,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
        avatar_url=payload.photo_url,
    )
    return _serialize_user(user)


@app.get("/api/users/by-username/{username}")
def api_get_user_by_username(username: str, db: Session = Depends(get_db)):
    return _serialize_user(get_user_by_username(db, username))


@app.post("/api/users/by-telegram-ids")
def api_get_users_by_telegram_ids(
    payload: TelegramIdsPayload, db: Session = Depends(get_db)
):
    return [_serialize_user(user) for user in get_users_by_telegram_ids(db, payload.telegram_ids)]


@app.get("/api/users/{user_id}/events")
def api_get_user_events(user_id: str, db: Session = Depends(get_db)):
    return [
        _serialize_user_event(event, invitation)
        for event, invitation in get_user_events(db, user_id)
    ]


@app.patch("/api/users/{user_id}/city")
def api_update_user_city(
    user_id: str, payload: CityPayload, db: Session = Depends(get_db)
):
    user = get_user(db, user_id)
    if user is None:
        return None
    user = update_user_city(db, user, city=payload.city, lat=payload.lat, lng=payload.lng)
    return _serialize_user(user)


@app.post("/api/check-collisions")
def api_check_collisions(payload: CollisionPayload, db: Session = Depends(get_db)):
    return check_collisions(db, payload.usernames, payload.date)


@app.post("/api/events")
def api_create_event(payload: EventCreatePayload, db: Session = Depends(get_db)):
    if get_user(db, payload.host_id) is None:
        raise HTTPException(status_code=400, detail="Unknown host")
    event = create_event(
        db,
        host_id=payload.host_id,
        date=payload.date,
        iftar_time=payload.iftar_time,
        location=payload.location,
        address=payload.address,
        notes=payload.notes,
        is_host_mode=payload.is_host_mode,
    )
    if payload.usernames:
        invite_usernames(db, event.id, payload.usernames)
    return _serialize_event(event)


@app.get("/api/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    event = get_event_details(db, event_id)
    if event is None:
        return None
    return _serialize_event(event, include_invitations=True)


@app.delete("/api/events/{event_id}")
def api_delete_event(event_id: str, db: Session = Depends(get_db)):
    delete_event(db, event_id)
    return {"success": True}


@app.post("/api/events/{event_id}/invite")
def api_invite(event_id: str, payload: InvitePayload, db: Session = Depends(get_db)):
    event = _ensure_event(db, event_id)
    invite_usernames(db, event.id, payload.usernames)
    return {"success": True}


@app.post("/api/events/{event_id}/ensure-invitation")
def api_ensure_invitation(
    event_id: str, payload: EnsureInvitationPayload, db: Session = Depends(get_db)
):
    event = _ensure_event(db, event_id)
    if get_user(db, payload.guest_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    ensure_invitation(db, event_id=event.id, guest_id=payload.guest_id)
    return {"success": True}


@app.patch("/api/invitations/{invitation_id}")
def api_update_invitation(
    invitation_id: str,
    payload: InvitationUpdatePayload,
    db: Session = Depends(get_db),
):
    invitation = get_invitation(db, invitation_id)
    if invitation is None:
        return None
    invitation = respond_to_invitation(
        db, invitation, status=payload.status, guest_count=payload.guest_count
    )
    return _serialize_invitation(invitation)


@app.delete("/api/invitations/{invitation_id}")
def api_delete_invitation(invitation_id: str, db: Session = Depends(get_db)):
    delete_invitation(db, invitation_id)
    return {"success": True}


@app.get("/api/stats")
def api_stats(db: Session = Depends(get_db)):
    return collect_stats(db, limit=settings.stats_list_limit)


@app.get("/api/cities")
def api_cities():
    return [
        {
            "id": city.id,
            "name": city.name,
            "name_kz": city.name_kz,
            "offset_minutes": city.offset_minutes,
        }
        for city in CITIES
    ]


@app.get("/api/iftar-times")
def api_iftar_times(
    date: str = Query(..., description="YYYY-MM-DD"),
    city: str | None = Query(None),
):
    city_obj = get_city(city or settings.default_city)
    if city_obj is None:
        raise HTTPException(status_code=400, detail="Invalid city")
    day = parse_date(date)
    times = get_day_times(day, city_obj.id)
    return {
        "date": day.isoformat(),
        "city": city_obj.id,
        "suhoor": times.suhoor,
        "iftar": times.iftar,
        "ramadan_day": ramadan_day(day, settings.ramadan_start_date)
        if is_ramadan_date(day)
        else None,
    }


@app.get("/api/prayer-times")
def api_prayer_times(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    year: int | None = Query(None, ge=1900, le=2100),
    client: PrayerTimesClient = Depends(get_prayer_times_client),
):
    return client.fetch(lat, lng, year or settings.ramadan_start_date.year)
