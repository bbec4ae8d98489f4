"""
HTTP-level tests for the FastAPI routes
"""

from datetime import datetime, timedelta
from urllib.parse import urlencode

import pytz

from fieldbook.models.booking_session import BookingSession, SessionStatus


def future_iso(days=3):
    when = (datetime.now(pytz.UTC) + timedelta(days=days)).replace(hour=10, minute=0, second=0, microsecond=0)
    return when.strftime("%Y-%m-%dT%H:%M:%S+0000")


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# Webhook

def test_webhook_form_body_creates_session(client, fake_acuity, db):
    fake_acuity.add_appointment(1001)
    response = client.post(
        "/api/acuity/webhook",
        content=urlencode({"action": "scheduled", "id": "1001", "calendarID": "4783035"}),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    assert response.json() == {"message": "OK"}
    assert db.query(BookingSession).count() == 1


def test_webhook_form_body_with_bracket_keys_completes_placeholder(client, fake_acuity, db):
    created = client.post(
        "/api/sessions/create-incomplete",
        json={"user_id": "user-jo", "field": "Central Bark", "date": "2025-11-12T16:30:00.000Z"},
    ).json()
    fake_acuity.fail_with = 500

    response = client.post(
        "/api/acuity/webhook",
        content=urlencode([
            ("action", "scheduled"),
            ("id", "1001"),
            ("calendarID", "4783035"),
            ("appointmentTypeID", "18525224"),
            ("datetime", "2025-11-12T16:30:00+0000"),
            ("client[email]", "Jo@Example.com"),
            ("field:17517976", created["sessionToken"]),
        ]),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    assert response.status_code == 200
    session = db.query(BookingSession).one()
    db.refresh(session)
    assert session.id == created["sessionId"]
    assert session.status == SessionStatus.COMPLETE.value
    assert session.acuity_appointment_id == 1001
    assert session.client_email == "jo@example.com"


def test_webhook_always_answers_200(client, fake_acuity):
    fake_acuity.fail_with = 500
    response = client.post(
        "/api/acuity/webhook",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {"message": "OK"}


def test_webhook_rejects_other_methods(client):
    assert client.get("/api/acuity/webhook").status_code == 405
    assert client.put("/api/acuity/webhook").status_code == 405
    assert client.delete("/api/acuity/webhook").status_code == 405


# Sessions

def test_create_incomplete_session(client, db):
    response = client.post(
        "/api/sessions/create-incomplete",
        json={"user_id": "user-jo", "field": "Central Bark", "date": "2025-11-12T16:30:00.000Z"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["sessionToken"].startswith("session_")
    session = db.query(BookingSession).one()
    assert session.id == body["sessionId"]
    assert session.status == SessionStatus.INCOMPLETE.value


def test_create_incomplete_session_retry_keeps_one_row(client, db):
    payload = {"field": "Central Bark", "date": "2025-11-12T16:30:00.000Z", "session_token": "session_1_abc"}
    first = client.post("/api/sessions/create-incomplete", json=payload).json()
    second = client.post("/api/sessions/create-incomplete", json=payload).json()
    assert second == first
    assert first["sessionToken"] == "session_1_abc"
    assert db.query(BookingSession).count() == 1


def test_create_incomplete_session_requires_fields(client):
    response = client.post("/api/sessions/create-incomplete", json={"field": "Central Bark"})
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "Missing required fields"


def test_my_sessions_links_by_email(client, fake_acuity):
    fake_acuity.add_appointment(1001, datetime=future_iso(), email="stranger@example.com")
    client.post("/api/acuity/webhook", json={"action": "scheduled", "id": 1001})

    response = client.get("/api/sessions", params={"user_id": "user-new", "email": "Stranger@Example.com"})
    assert response.status_code == 200
    body = response.json()
    assert body["linked"] == 1
    assert len(body["upcoming"]) == 1
    assert body["past"] == []
    view = body["upcoming"][0]
    assert view["name"] == "Central Bark"
    assert view["price"] == "£5.50"
    assert view["length"] == "30 min"
    assert view["acuity_appointment_id"] == 1001


def test_cancel_session(client, fake_acuity, db):
    fake_acuity.add_appointment(1001)
    client.post("/api/acuity/webhook", json={"action": "scheduled", "id": 1001})

    response = client.post("/api/cancel-session", json={"appointmentId": "1001"})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert fake_acuity.appointments["1001"]["canceled"] is True
    assert db.query(BookingSession).one().status == SessionStatus.CANCELLED.value


def test_cancel_session_upstream_failure_leaves_session(client, fake_acuity, db):
    fake_acuity.add_appointment(1001)
    client.post("/api/acuity/webhook", json={"action": "scheduled", "id": 1001})
    fake_acuity.fail_with = 500

    response = client.post("/api/cancel-session", json={"appointmentId": 1001})
    assert response.status_code == 500
    assert db.query(BookingSession).one().status == SessionStatus.COMPLETE.value


def test_cancel_session_requires_id(client):
    response = client.post("/api/cancel-session", json={})
    assert response.status_code == 400


def test_sync_acuity(client, fake_acuity):
    fake_acuity.add_appointment(1001)
    client.post("/api/acuity/webhook", json={"action": "scheduled", "id": 1001})
    fake_acuity.appointments["1001"]["calendarID"] = 6255352

    response = client.post("/api/sessions/sync-acuity", json={"appointmentId": 1001})
    assert response.status_code == 200
    assert response.json()["updated"]["field"] == "Hyde Bark"


def test_sync_acuity_unknown_session(client, fake_acuity):
    fake_acuity.add_appointment(1001)
    response = client.post("/api/sessions/sync-acuity", json={"appointmentId": 1001})
    assert response.status_code == 404


def test_link_sessions_specific_email_without_account(client):
    response = client.post("/api/link-sessions", json={"specificEmail": "nobody@example.com"})
    assert response.status_code == 404
    assert response.json()["detail"]["userFound"] is False


def test_link_sessions_bulk(client, fake_acuity):
    fake_acuity.add_appointment(1002, email="stranger@example.com")
    client.post("/api/acuity/webhook", json={"action": "scheduled", "id": 1002})

    response = client.post("/api/link-sessions", json={})
    assert response.status_code == 200
    assert response.json()["linked"] == 0
    assert response.json()["results"][0]["status"] == "no_user_found"


def test_backfill_emails_with_nothing_to_do(client):
    response = client.post("/api/backfill-emails")
    assert response.status_code == 200
    assert response.json()["message"] == "No sessions need email backfill"


def test_debug_users(client):
    response = client.get("/api/debug-users")
    assert response.status_code == 200
    body = response.json()
    assert body["totalUsers"] == 2
    assert body["sessionQueryWorking"] is True


# Acuity routes

def test_availability_requires_type(client):
    response = client.get("/api/availability")
    assert response.status_code == 400


def test_availability(client, fake_acuity):
    fake_acuity.availability[("4783035", "2025-11-12")] = [{"time": "2025-11-12T11:00:00+0000"}]
    response = client.get(
        "/api/availability",
        params={"appointmentTypeID": "18525224", "startDate": "2025-11-12", "endDate": "2025-11-12"},
    )
    assert response.status_code == 200
    assert response.json() == [{"calendarID": 4783035, "startTime": "2025-11-12T11:00:00+0000"}]


def test_availability_rejects_reversed_range(client):
    response = client.get(
        "/api/availability",
        params={"appointmentTypeID": "18525224", "startDate": "2025-11-12", "endDate": "2025-11-10"},
    )
    assert response.status_code == 400


def test_appointment_info(client, fake_acuity):
    fake_acuity.add_appointment(1001)
    response = client.get("/api/acuity/appointment/1001")
    assert response.status_code == 200
    assert response.json() == {"appointmentId": "1001", "appointmentTypeID": "18525224", "calendarID": "4783035"}


def test_resend_confirmation_explains_limitation(client, fake_acuity):
    fake_acuity.add_appointment(1001)
    response = client.post("/api/acuity/appointment/1001/resend")
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "Email resend not available via API"


def test_reschedule_and_sync(client, fake_acuity, db):
    fake_acuity.add_appointment(1001)
    client.post("/api/acuity/webhook", json={"action": "scheduled", "id": 1001})

    response = client.post(
        "/api/acuity/reschedule",
        json={"appointmentId": 1001, "datetime": "2025-11-14T09:00:00.000Z", "calendarID": 6255352},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    session = db.query(BookingSession).one()
    db.refresh(session)
    assert session.date == "2025-11-14T09:00:00.000Z"
    assert session.start_time == "09:00:00"
    assert session.field == "Hyde Bark"
    assert session.calendar_id == "6255352"


def test_reschedule_detects_ignored_change(client, fake_acuity):
    fake_acuity.add_appointment(1001)
    fake_acuity.ignore_reschedule = True
    response = client.post(
        "/api/acuity/reschedule",
        json={"appointmentId": 1001, "newDateTime": "2025-11-14T09:00:00.000Z"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["expected"] == "2025-11-14T09:00:00+0000"


def test_reschedule_accepts_echo_in_another_offset(client, fake_acuity):
    # Acuity echoes the new slot in the calendar's local offset
    fake_acuity.add_appointment(1001, datetime="2025-11-14T10:00:00+0100")
    fake_acuity.ignore_reschedule = True
    response = client.post(
        "/api/acuity/reschedule",
        json={"appointmentId": 1001, "datetime": "2025-11-14T09:00:00.000Z"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["updatedDatetime"] == "2025-11-14T10:00:00+0100"


def test_reschedule_redirect(client, fake_acuity):
    fake_acuity.add_appointment(1001)
    response = client.get(
        "/api/reschedule",
        params={"appointmentId": "1001", "email": "jo@example.com"},
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert "appointmentID=1001" in response.headers["location"]


def test_booking_url(client):
    response = client.post("/api/booking-url", json={
        "sessionToken": "session_1_abc",
        "calendarID": 4783035,
        "appointmentTypeID": 18525224,
        "startTime": "2025-11-12T16:30:00.000Z",
    })
    assert response.status_code == 200
    assert "field:17517976=session_1_abc" in response.json()["url"]


def test_health(client, db, monkeypatch):
    import fieldbook.main as main

    monkeypatch.setattr(main, "check_db_connection", lambda: True)
    monkeypatch.setattr(main, "SessionLocal", lambda: db)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"
