from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from iftar import api, crud, database
from iftar.prayer_times import PrayerTimesClient, TTLCache
from iftar.utils import today


@pytest.fixture()
def client():
    with TestClient(api.app) as test_client:
        yield test_client
    api.app.dependency_overrides.clear()


def _create_user(client: TestClient, telegram_id: int, username: str | None, **extra):
    payload = {"id": telegram_id, "username": username, "first_name": username, **extra}
    response = client.post("/api/users", json=payload)
    assert response.status_code == 200
    return response.json()


def _create_event(client: TestClient, host_id: str, **fields):
    payload = {"host_id": host_id, "date": "2026-03-01", **fields}
    response = client.post("/api/events", json=payload)
    assert response.status_code == 200
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_upsert_user_maps_photo_url_and_updates_profile(client):
    created = _create_user(client, 7, "alice", photo_url="https://t.me/a.jpg")
    assert created["telegram_id"] == 7
    assert created["avatar_url"] == "https://t.me/a.jpg"
    assert created["city"] == "astana"

    updated = _create_user(client, 7, "alice2")
    assert updated["id"] == created["id"]
    assert updated["username"] == "alice2"


def test_get_user_by_username_returns_null_when_missing(client):
    _create_user(client, 1, "Alice")

    assert client.get("/api/users/by-username/@alice").json()["telegram_id"] == 1
    missing = client.get("/api/users/by-username/nobody")
    assert missing.status_code == 200
    assert missing.json() is None


def test_create_event_and_fetch_details(client):
    host = _create_user(client, 1, "host")
    event = _create_event(
        client, host["id"], iftar_time="18:30", location="Home", notes="Bring dates"
    )
    assert event["host"]["id"] == host["id"]
    assert event["is_host_mode"] is True

    details = client.get(f"/api/events/{event['id']}").json()
    assert details["date"] == "2026-03-01"
    assert details["iftar_time"] == "18:30"
    assert details["location"] == "Home"
    assert details["invitations"] == []


def test_create_event_with_usernames_invites_known_users(client):
    host = _create_user(client, 1, "host")
    _create_user(client, 2, "alice")
    event = _create_event(client, host["id"], usernames=["alice", "bob"])

    details = client.get(f"/api/events/{event['id']}").json()
    assert [inv["guest"]["username"] for inv in details["invitations"]] == ["alice"]
    assert details["invitations"][0]["status"] == "pending"


def test_create_event_rejects_unknown_host_and_bad_date(client):
    response = client.post("/api/events", json={"host_id": "nope", "date": "2026-03-01"})
    assert response.status_code == 400
    assert response.json() == {"error": "Unknown host"}

    host = _create_user(client, 1, "host")
    response = client.post("/api/events", json={"host_id": host["id"], "date": "soon"})
    assert response.status_code == 400
    assert "error" in response.json()


def test_missing_event_returns_null(client):
    response = client.get("/api/events/does-not-exist")
    assert response.status_code == 200
    assert response.json() is None


def test_invite_skips_unknown_usernames(client):
    host = _create_user(client, 1, "host")
    _create_user(client, 2, "alice")
    event = _create_event(client, host["id"])

    response = client.post(
        f"/api/events/{event['id']}/invite", json={"usernames": ["alice", "bob"]}
    )
    assert response.json() == {"success": True}

    details = client.get(f"/api/events/{event['id']}").json()
    assert len(details["invitations"]) == 1


def test_ensure_invitation_twice_keeps_one_row(client):
    host = _create_user(client, 1, "host")
    guest = _create_user(client, 2, "guest")
    event = _create_event(client, host["id"])

    for _ in range(2):
        response = client.post(
            f"/api/events/{event['id']}/ensure-invitation",
            json={"guest_id": guest["id"]},
        )
        assert response.json() == {"success": True}

    details = client.get(f"/api/events/{event['id']}").json()
    assert len(details["invitations"]) == 1


def test_update_invitation_flow(client):
    host = _create_user(client, 1, "host")
    guest = _create_user(client, 2, "guest")
    event = _create_event(client, host["id"], usernames=["guest"])
    invitation_id = client.get(f"/api/events/{event['id']}").json()["invitations"][0]["id"]

    accepted = client.patch(
        f"/api/invitations/{invitation_id}",
        json={"status": "accepted", "guest_count": 3},
    ).json()
    assert accepted["status"] == "accepted"
    assert accepted["guest_count"] == 3
    assert accepted["responded_at"] is not None
    assert accepted["guest_id"] == guest["id"]

    declined = client.patch(
        f"/api/invitations/{invitation_id}", json={"status": "declined"}
    ).json()
    assert declined["guest_count"] == 1

    invalid = client.patch(f"/api/invitations/{invitation_id}", json={"status": "nah"})
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid status"}

    missing = client.patch("/api/invitations/missing", json={"status": "accepted"})
    assert missing.json() is None


def test_delete_event_and_invitation(client):
    host = _create_user(client, 1, "host")
    _create_user(client, 2, "a")
    _create_user(client, 3, "b")
    event = _create_event(client, host["id"], usernames=["a", "b"])
    details = client.get(f"/api/events/{event['id']}").json()

    first_id = details["invitations"][0]["id"]
    assert client.delete(f"/api/invitations/{first_id}").json() == {"success": True}
    assert len(client.get(f"/api/events/{event['id']}").json()["invitations"]) == 1

    assert client.delete(f"/api/events/{event['id']}").json() == {"success": True}
    assert client.get(f"/api/events/{event['id']}").json() is None
    assert client.delete(f"/api/events/{event['id']}").json() == {"success": True}


def test_user_events_are_deduplicated_and_annotated(client):
    user = _create_user(client, 1, "user")
    other = _create_user(client, 2, "other")
    upcoming = (today() + timedelta(days=2)).isoformat()
    later = (today() + timedelta(days=4)).isoformat()
    own = _create_event(client, user["id"], date=later)
    invited = _create_event(client, other["id"], date=upcoming, usernames=["user"])
    client.post(
        f"/api/events/{own['id']}/ensure-invitation", json={"guest_id": user["id"]}
    )

    events = client.get(f"/api/users/{user['id']}/events").json()

    assert [event["id"] for event in events] == [invited["id"], own["id"]]
    assert events[0]["invitation_status"] == "pending"
    assert "invitation_id" in events[1]


def test_check_collisions_endpoint(client):
    host = _create_user(client, 1, "hosta")
    _create_user(client, 2, "guest")
    _create_event(client, host["id"], date="2026-03-05", usernames=["guest"])

    response = client.post(
        "/api/check-collisions",
        json={"usernames": ["guest", "ghost"], "date": "2026-03-05"},
    )
    assert response.json() == [
        {"username": "guest", "host_username": "hosta", "status": "pending"}
    ]

    other_day = client.post(
        "/api/check-collisions", json={"usernames": ["guest"], "date": "2026-03-06"}
    )
    assert other_day.json() == []


def test_users_by_telegram_ids(client):
    _create_user(client, 11, "a")
    _create_user(client, 12, "b")

    response = client.post("/api/users/by-telegram-ids", json={"telegram_ids": [12]})
    assert [user["username"] for user in response.json()] == ["b"]
    empty = client.post("/api/users/by-telegram-ids", json={"telegram_ids": []})
    assert empty.json() == []


def test_update_city(client):
    user = _create_user(client, 1, "user")

    updated = client.patch(
        f"/api/users/{user['id']}/city", json={"city": "almaty", "lat": 43.2, "lng": 76.9}
    ).json()
    assert updated["city"] == "almaty"
    assert updated["city_lat"] == 43.2

    invalid = client.patch(f"/api/users/{user['id']}/city", json={"city": "paris"})
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid city"}

    missing = client.patch("/api/users/nobody/city", json={"city": "almaty"})
    assert missing.json() is None


def test_validation_errors_use_error_envelope(client):
    response = client.post("/api/check-collisions", json={"usernames": ["a"]})
    assert response.status_code == 400
    assert "date" in response.json()["error"]


def test_unhandled_errors_return_500_with_message(monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(api, "collect_stats", _boom)
    with TestClient(api.app, raise_server_exceptions=False) as test_client:
        response = test_client.get("/api/stats")
    assert response.status_code == 500
    assert response.json() == {"error": "database exploded"}


def test_stats_endpoint(client):
    host = _create_user(client, 1, "host")
    _create_user(client, 2, "guest")
    upcoming = (today() + timedelta(days=1)).isoformat()
    event = _create_event(client, host["id"], date=upcoming, usernames=["guest"])
    invitation_id = client.get(f"/api/events/{event['id']}").json()["invitations"][0]["id"]
    client.patch(f"/api/invitations/{invitation_id}", json={"status": "accepted"})

    stats = client.get("/api/stats").json()

    assert stats["counts"] == {
        "total_users": 2,
        "total_events": 1,
        "unique_hosts": 1,
        "total_invitations": 1,
        "accepted_rsvps": 1,
    }
    assert stats["upcoming_events"][0]["invite_count"] == 1
    assert stats["upcoming_events"][0]["accepted_count"] == 1
    assert stats["upcoming_events"][0]["host_username"] == "host"
    assert len(stats["recent_users"]) == 2


def test_cities_and_iftar_times(client):
    cities = client.get("/api/cities").json()
    assert {"id": "astana", "name": "Астана", "name_kz": "Астана", "offset_minutes": 0} in cities

    times = client.get("/api/iftar-times", params={"date": "2026-02-17"}).json()
    assert times == {
        "date": "2026-02-17",
        "city": "astana",
        "suhoor": "05:53",
        "iftar": "17:38",
        "ramadan_day": 1,
    }

    almaty = client.get(
        "/api/iftar-times", params={"date": "2026-02-17", "city": "almaty"}
    ).json()
    assert almaty["iftar"] == "17:16"

    outside = client.get("/api/iftar-times", params={"date": "2026-06-01"}).json()
    assert outside["iftar"] == "18:00"
    assert outside["ramadan_day"] is None

    invalid = client.get("/api/iftar-times", params={"date": "2026-02-17", "city": "x"})
    assert invalid.status_code == 400


def test_prayer_times_are_fetched_once_and_cached(client):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url)
        return httpx.Response(
            200,
            json={
                "code": 200,
                "data": [
                    {
                        "timings": {"Fajr": "05:53 (+05)", "Maghrib": "17:38 (+05)"},
                        "date": {"gregorian": {"date": "17-02-2026"}},
                    }
                ],
            },
        )

    prayer_client = PrayerTimesClient(
        base_url="https://prayer.test/v1/calendar",
        method=3,
        cache=TTLCache(timedelta(hours=24)),
        transport=httpx.MockTransport(handler),
    )
    api.app.dependency_overrides[api.get_prayer_times_client] = lambda: prayer_client

    params = {"lat": 51.17, "lng": 71.45, "year": 2026}
    first = client.get("/api/prayer-times", params=params)
    second = client.get("/api/prayer-times", params=params)

    assert first.json() == {"2026-02-17": {"suhoor": "05:53", "iftar": "17:38"}}
    assert second.json() == first.json()
    assert len(calls) == 1
    assert calls[0].path == "/v1/calendar/2026"
    assert calls[0].params["method"] == "3"


def test_prayer_times_validates_coordinates(client):
    response = client.get("/api/prayer-times", params={"lat": 200, "lng": 0})
    assert response.status_code == 400


def test_malformed_dates_are_rejected(client):
    response = client.post(
        "/api/check-collisions", json={"usernames": ["a"], "date": "2026-03-05junk"}
    )
    assert response.status_code == 400
    assert "error" in response.json()
