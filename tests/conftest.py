"""
Shared fixtures: in-memory database, fake Acuity and Supabase backends
"""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldbook.database import Base, init_db
from fieldbook.api.acuity_client import AcuityClient
from fieldbook.api.supabase_auth import SupabaseAuthClient
from fieldbook.services.session_service import SessionService
from fieldbook.services.reconciliation import SessionReconciler

CENTRAL_BARK_CALENDAR = "4783035"
HYDE_BARK_CALENDAR = "6255352"
THIRTY_MINUTES = "18525224"


class FakeAcuity:
    """In-memory stand-in for the Acuity REST API, served through httpx.MockTransport"""

    def __init__(self):
        self.appointments = {}
        self.availability = {}
        self.requests = []
        self.fail_with = None
        self.ignore_reschedule = False

    def add_appointment(self, appointment_id, **fields):
        appointment = {
            "id": int(appointment_id),
            "calendarID": int(CENTRAL_BARK_CALENDAR),
            "appointmentTypeID": int(THIRTY_MINUTES),
            "type": "30-Minute Reservation",
            "datetime": "2025-11-12T16:30:00+0000",
            "firstName": "Jo",
            "lastName": "Bloggs",
            "email": "Jo@Example.com",
            "price": "5.50",
            "canceled": False,
        }
        appointment.update(fields)
        self.appointments[str(appointment_id)] = appointment
        return appointment

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"error": "upstream"})

        parts = request.url.path.split("/")
        # /api/v1/appointments/{id}[/reschedule|/email]
        if "appointments" in parts:
            appointment_id = parts[parts.index("appointments") + 1]
            appointment = self.appointments.get(appointment_id)
            if appointment is None:
                return httpx.Response(404, json={"error": "not_found"})
            action = parts[-1] if parts[-1] != appointment_id else None
            if action == "email":
                return httpx.Response(404, json={"error": "not_found"})
            if request.method == "PUT":
                body = json.loads(request.content or b"{}")
                if action == "reschedule":
                    if not self.ignore_reschedule:
                        appointment["datetime"] = body["datetime"]
                        if "calendarID" in body:
                            appointment["calendarID"] = body["calendarID"]
                else:
                    appointment.update(body)
            return httpx.Response(200, json=appointment)

        if request.url.path.endswith("/availability/times"):
            key = (request.url.params["calendarID"], request.url.params["date"])
            return httpx.Response(200, json=self.availability.get(key, []))

        return httpx.Response(404, json={"error": "unknown route"})


class FakeSupabase:
    def __init__(self, users=None):
        self.users = list(users or [])
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        page = int(request.url.params.get("page", 1))
        per_page = int(request.url.params.get("per_page", 50))
        start = (page - 1) * per_page
        return httpx.Response(200, json={"users": self.users[start:start + per_page]})


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_service(db):
    return SessionService(db)


@pytest.fixture
def fake_acuity():
    return FakeAcuity()


@pytest.fixture
def acuity_client(fake_acuity):
    return AcuityClient(
        user_id="user",
        api_key="key",
        calendar_ids=[CENTRAL_BARK_CALENDAR, HYDE_BARK_CALENDAR],
        transport=httpx.MockTransport(fake_acuity.handler),
    )


@pytest.fixture
def fake_supabase():
    return FakeSupabase(users=[
        {"id": "user-jo", "email": "jo@example.com", "created_at": "2025-01-01T00:00:00Z"},
        {"id": "user-sam", "email": "Sam@Example.com", "created_at": "2025-02-01T00:00:00Z"},
    ])


@pytest.fixture
def auth_client(fake_supabase):
    return SupabaseAuthClient(
        url="https://project.supabase.co",
        service_role_key="service-role",
        transport=httpx.MockTransport(fake_supabase.handler),
    )


@pytest.fixture
def reconciler(session_service, acuity_client, auth_client):
    return SessionReconciler(session_service, acuity_client, auth_client)


@pytest.fixture
def client(db, acuity_client, auth_client):
    from fastapi.testclient import TestClient
    from fieldbook.main import app
    from fieldbook.database import get_db
    from fieldbook.api.deps import get_acuity_client, get_auth_client

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_acuity_client] = lambda: acuity_client
    app.dependency_overrides[get_auth_client] = lambda: auth_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
