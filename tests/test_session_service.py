"""
Tests for the sessions table service
"""

import re
from datetime import datetime

import pytest
import pytz

from fieldbook.models.booking_session import BookingSession, SessionStatus, SessionSource
from fieldbook.services.reconciliation import AppointmentRecord
from fieldbook.services.session_service import generate_session_token, normalize_email


def make_record(appointment_id=1001, **overrides):
    values = dict(
        appointment_id=appointment_id,
        client_name="Jo Bloggs",
        client_email="jo@example.com",
        field="Central Bark",
        date="2025-11-12T16:30:00.000Z",
        start_time="16:30:00",
        length="30 min",
        price=5.5,
        calendar_id="4783035",
        appointment_type_id="18525224",
    )
    values.update(overrides)
    return AppointmentRecord(**values)


def test_generate_session_token_format():
    token = generate_session_token()
    assert re.fullmatch(r"session_\d{13}_[a-z0-9]{9}", token)
    assert token != generate_session_token()


def test_normalize_email():
    assert normalize_email("  Jo@Example.COM ") == "jo@example.com"
    assert normalize_email("") is None
    assert normalize_email(None) is None


def test_create_incomplete_session(session_service):
    session = session_service.create_incomplete_session(
        field="Hyde Bark", date="2025-11-12T16:30:00.000Z", user_id="user-1",
    )
    assert session.status == SessionStatus.INCOMPLETE.value
    assert session.source == SessionSource.APP.value
    assert session.session_token.startswith("session_")
    assert session_service.get_session_by_token(session.session_token).id == session.id


def test_create_incomplete_session_reuses_known_token(session_service, db):
    first = session_service.create_incomplete_session(
        field="Central Bark", date="2025-11-12T16:30:00.000Z", session_token="session_1_abc",
    )
    again = session_service.create_incomplete_session(
        field="Central Bark", date="2025-11-12T16:30:00.000Z", session_token="session_1_abc",
    )
    assert again.id == first.id
    assert db.query(BookingSession).count() == 1


def test_upsert_creates_acuity_session(session_service):
    session, created = session_service.upsert_from_appointment(make_record())
    assert created
    assert session.source == SessionSource.ACUITY.value
    assert session.status == SessionStatus.COMPLETE.value
    assert session.acuity_appointment_id == 1001
    assert session.user_id is None


def test_upsert_is_idempotent(session_service, db):
    session_service.upsert_from_appointment(make_record())
    session, created = session_service.upsert_from_appointment(make_record())
    assert not created
    assert db.query(BookingSession).count() == 1


def test_upsert_keeps_values_when_update_is_empty(session_service):
    session_service.upsert_from_appointment(make_record())
    session, _ = session_service.upsert_from_appointment(
        make_record(client_name=None, client_email="", date="2025-11-13T10:00:00.000Z"),
    )
    assert session.client_name == "Jo Bloggs"
    assert session.client_email == "jo@example.com"
    assert session.date == "2025-11-13T10:00:00.000Z"


def test_upsert_matches_incomplete_session_by_token(session_service, db):
    placeholder = session_service.create_incomplete_session(
        field="Central Bark", date="2025-11-12T16:30:00.000Z", session_token="session_1_abc",
    )
    session, created = session_service.upsert_from_appointment(make_record(), session_token="session_1_abc")
    assert not created
    assert session.id == placeholder.id
    assert session.status == SessionStatus.COMPLETE.value
    assert session.source == SessionSource.APP.value
    assert db.query(BookingSession).count() == 1


def test_upsert_matches_incomplete_session_by_user_and_field(session_service):
    placeholder = session_service.create_incomplete_session(
        field="Central Bark", date="2025-11-12T16:30:00.000Z", user_id="user-1",
    )
    session, created = session_service.upsert_from_appointment(make_record(), user_id="user-1")
    assert not created
    assert session.id == placeholder.id


def test_upsert_never_reassigns_user(session_service):
    session_service.upsert_from_appointment(make_record(), user_id="user-1")
    session, _ = session_service.upsert_from_appointment(make_record(), user_id="user-2")
    assert session.user_id == "user-1"


def test_upsert_keeps_cancelled_status(session_service):
    session_service.upsert_from_appointment(make_record())
    session_service.cancel_by_appointment_id(1001)
    session, _ = session_service.upsert_from_appointment(make_record())
    assert session.status == SessionStatus.CANCELLED.value


def test_upsert_without_date_cannot_create(session_service):
    with pytest.raises(ValueError):
        session_service.upsert_from_appointment(make_record(date=None))


def test_cancel_unknown_appointment(session_service):
    assert session_service.cancel_by_appointment_id(424242) == 0


def test_update_schedule(session_service):
    session_service.upsert_from_appointment(make_record())
    updated = session_service.update_schedule_for_appointment(
        1001, "2025-11-14T09:00:00.000Z", "Hyde Bark", start_time="09:00:00", calendar_id="6255352",
    )
    assert updated == 1
    session = session_service.get_sessions_by_appointment_id(1001)[0]
    assert session.field == "Hyde Bark"
    assert session.date == "2025-11-14T09:00:00.000Z"
    assert session.start_time == "09:00:00"
    assert session.calendar_id == "6255352"


def test_link_sessions_only_touches_unlinked(session_service):
    unlinked, _ = session_service.upsert_from_appointment(make_record(1))
    owned, _ = session_service.upsert_from_appointment(make_record(2), user_id="someone-else")

    found = session_service.find_unlinked_sessions("JO@example.com")
    assert [s.id for s in found] == [unlinked.id]

    assert session_service.link_sessions([unlinked.id, owned.id], "user-1") == 1
    assert session_service.known_user_id_for_email("jo@example.com") in {"user-1", "someone-else"}
    assert session_service.find_unlinked_sessions() == []


def test_sessions_missing_email_and_set(session_service):
    session, _ = session_service.upsert_from_appointment(make_record(client_email=None))
    assert [s.id for s in session_service.sessions_missing_email()] == [session.id]
    session_service.set_client_email(session.id, "New@Example.com")
    assert session_service.sessions_missing_email() == []
    assert session_service.get_session_by_id(session.id).client_email == "new@example.com"


def test_list_user_sessions_splits_and_orders(session_service):
    for appointment_id, when in [
        (1, "2025-11-20T10:00:00.000Z"),
        (2, "2025-11-15T10:00:00.000Z"),
        (3, "2025-11-01T10:00:00.000Z"),
        (4, "2025-10-01T10:00:00.000Z"),
    ]:
        session_service.upsert_from_appointment(make_record(appointment_id, date=when), user_id="user-1")
    session_service.cancel_by_appointment_id(2)

    now = datetime(2025, 11, 10, tzinfo=pytz.UTC)
    grouped = session_service.list_user_sessions("user-1", now=now)
    assert [s.acuity_appointment_id for s in grouped["upcoming"]] == [1]
    assert [s.acuity_appointment_id for s in grouped["past"]] == [3, 4]


def test_count_by_status(session_service):
    session_service.upsert_from_appointment(make_record(1))
    session_service.create_incomplete_session(field="Central Bark", date="2025-11-12T16:30:00.000Z")
    assert session_service.count_by_status() == {"complete": 1, "incomplete": 1}
