# tests/conftest.py
import os
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import pytest

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-0123456789abcdef0123"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-0123456789abcdef012"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("REDIS_URL", None)

from fastapi.testclient import TestClient  # noqa: E402

from app import crud, models  # noqa: E402
from app.compliance_logger import ComplianceLogger  # noqa: E402
from app.context import RequestContext  # noqa: E402
from app.database import SessionLocal, create_tables, drop_tables  # noqa: E402
from app.main import app  # noqa: E402
from app.models import AppointmentStatus, ReminderChannel, Role  # noqa: E402
from app.permissions import AuthUser  # noqa: E402
from app.security import create_access_token, get_password_hash, new_token_version  # noqa: E402
from app.services.webhook_service import WebhookDispatcher, get_webhook_dispatcher  # noqa: E402

PASSWORD = "correct-horse-battery"
PASSWORD_HASH = get_password_hash(PASSWORD)
WEBHOOK_SECRET = "s" * 40

# 2025-06-01 is a Sunday
FIXED_NOW = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)


class Factory:
    """Builds committed rows for a test."""

    def __init__(self, db):
        self.db = db

    def clinic(self, name="Main Street Clinic", timezone="UTC"):
        return crud.create_clinic(self.db, name=name, timezone=timezone)

    def user(self, clinic, role=Role.CLINIC_ADMIN, email=None, **fields):
        email = email or f"{role.value.lower()}-{uuid4().hex[:8]}@example.com"
        return crud.create_user(
            self.db, clinic_id=clinic.id, email=email, password_hash=PASSWORD_HASH, role=role, **fields
        )

    def doctor(self, clinic, user=None, **fields):
        user = user or self.user(clinic, Role.DOCTOR, first_name="Meredith", last_name="Grey")
        return crud.create_doctor(self.db, clinic_id=clinic.id, user_id=user.id, **fields)

    def assistant(self, clinic, user=None, **fields):
        user = user or self.user(clinic, Role.ASSISTANT)
        return crud.create_assistant(self.db, clinic_id=clinic.id, user_id=user.id, **fields)

    def patient(self, clinic, user=None, **fields):
        fields.setdefault("first_name", "Jane")
        fields.setdefault("last_name", "Doe")
        fields.setdefault("email", f"patient-{uuid4().hex[:8]}@example.com")
        fields.setdefault("phone", "+15550100")
        return crud.create_patient(self.db, clinic_id=clinic.id, user_id=user.id if user else None, **fields)

    def appointment(self, clinic, doctor, patient, start, minutes=30, status=AppointmentStatus.CONFIRMED, **fields):
        return crud.create_appointment(
            self.db,
            clinic_id=clinic.id,
            doctor_id=doctor.id,
            patient_id=patient.id,
            start=start,
            end=start + timedelta(minutes=minutes),
            status=status,
            **fields,
        )

    def rule(self, clinic, offset_min, channel=ReminderChannel.SMS, active=True, template=None):
        return crud.save(self.db, models.ReminderRule(
            clinic_id=clinic.id, offset_min=offset_min, channel=channel, active=active, template=template,
        ))

    def endpoint(self, clinic, url="https://hooks.example.com/clinic", events=("appointment.created",), **fields):
        fields.setdefault("secret", WEBHOOK_SECRET)
        return crud.save(self.db, models.WebhookEndpoint(
            clinic_id=clinic.id, url=url, events=list(events), **fields,
        ))


class Recorder:
    """httpx transport handler that remembers every request it answers."""

    def __init__(self, status_code=200, fail_urls=()):
        self.status_code = status_code
        self.fail_urls = set(fail_urls)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) in self.fail_urls:
            return httpx.Response(500)
        return httpx.Response(self.status_code)


def as_auth_user(user) -> AuthUser:
    return AuthUser(id=user.id, email=user.email, role=user.role, clinic_id=user.clinic_id)


@pytest.fixture
def db():
    drop_tables()
    create_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_recorder():
    return Recorder


@pytest.fixture
def make_ctx(db, recorder):
    """Build a RequestContext for `user`, with a fixed clock and a mock webhook transport."""
    def _make(user, now=FIXED_NOW, audit=None, handler=None):
        return RequestContext(
            db=db,
            user=as_auth_user(user),
            audit=audit or ComplianceLogger(db, clinic_id=user.clinic_id, actor_id=user.id),
            webhooks=WebhookDispatcher(timeout=5, transport=httpx.MockTransport(handler or recorder)),
            now=lambda: now,
        )
    return _make


@pytest.fixture
def client(db, recorder):
    app.dependency_overrides[get_webhook_dispatcher] = lambda: WebhookDispatcher(
        timeout=5, transport=httpx.MockTransport(recorder)
    )
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user, new_token_version())}"}
    return _headers
