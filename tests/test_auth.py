# tests/test_auth.py
import pytest

from app import models
from app.models import Role
from app.session_store import InMemoryTokenStore

PASSWORD = "correct-horse-battery"
API = "/api/v1"


@pytest.fixture
def clinic(factory):
    return factory.clinic()


def login(client, email, password=PASSWORD, clinic_id=None):
    body = {"email": email, "password": password}
    if clinic_id:
        body["clinic_id"] = clinic_id
    return client.post(f"{API}/auth/login", json=body)


def bearer(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def test_health(client):
    response = client.get(f"{API}/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_register_creates_a_patient_account(client, db, clinic):
    response = client.post(f"{API}/auth/register", json={
        "clinic_id": clinic.id,
        "email": "new.patient@example.com",
        "password": PASSWORD,
        "first_name": "New",
        "last_name": "Patient",
    })

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == Role.PATIENT.value
    patient = db.query(models.Patient).filter_by(email="new.patient@example.com").one()
    assert patient.user_id == body["user"]["id"]


def test_register_claims_existing_patient_record(client, db, factory, clinic):
    existing = factory.patient(clinic, email="walk.in@example.com")

    response = client.post(f"{API}/auth/register", json={
        "clinic_id": clinic.id, "email": "walk.in@example.com", "password": PASSWORD,
    })

    assert response.status_code == 201, response.text
    db.refresh(existing)
    assert existing.user_id == response.json()["user"]["id"]


def test_register_rejects_short_password_and_unknown_clinic(client, clinic):
    short = client.post(f"{API}/auth/register", json={
        "clinic_id": clinic.id, "email": "a@example.com", "password": "short",
    })
    assert short.status_code == 400

    unknown = client.post(f"{API}/auth/register", json={
        "clinic_id": "no-such-clinic", "email": "a@example.com", "password": PASSWORD,
    })
    assert unknown.status_code == 404


def test_login_and_me(client, factory, clinic):
    user = factory.user(clinic, Role.CLINIC_ADMIN, email="admin@example.com")

    response = login(client, "admin@example.com")
    assert response.status_code == 200, response.text
    tokens = response.json()

    me = client.get(f"{API}/auth/me", headers=bearer(tokens))
    assert me.status_code == 200
    assert me.json()["id"] == user.id
    assert me.json()["last_login_at"] is not None


def test_wrong_password_is_unauthenticated(client, factory, clinic):
    factory.user(clinic, email="admin@example.com")

    response = login(client, "admin@example.com", password="wrong-password")

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"
    assert response.headers["www-authenticate"] == "Bearer"


def test_missing_token_is_unauthenticated(client):
    response = client.get(f"{API}/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_deactivated_account_cannot_log_in(client, factory, clinic):
    factory.user(clinic, email="gone@example.com", active=False)

    response = login(client, "gone@example.com")

    assert response.status_code == 403
    assert response.json()["detail"] == "Account is deactivated"


def test_email_in_several_clinics_needs_a_clinic(client, factory, clinic):
    other = factory.clinic(name="Uptown Clinic")
    factory.user(clinic, email="shared@example.com")
    factory.user(other, email="shared@example.com")

    ambiguous = login(client, "shared@example.com")
    assert ambiguous.status_code == 400
    assert sorted(c["name"] for c in ambiguous.json()["clinics"]) == ["Main Street Clinic", "Uptown Clinic"]

    scoped = login(client, "shared@example.com", clinic_id=other.id)
    assert scoped.status_code == 200
    assert scoped.json()["user"]["clinic_id"] == other.id


def test_refresh_rotates_the_token(client, factory, clinic):
    factory.user(clinic, email="admin@example.com")
    first = login(client, "admin@example.com").json()

    rotated = client.post(f"{API}/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert rotated.status_code == 200, rotated.text
    assert rotated.json()["refresh_token"] != first["refresh_token"]

    replay = client.post(f"{API}/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert replay.status_code == 401


def test_access_token_is_not_a_refresh_token(client, factory, clinic):
    factory.user(clinic, email="admin@example.com")
    tokens = login(client, "admin@example.com").json()

    response = client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert response.status_code == 401


def test_logout_revokes_one_refresh_token(client, factory, clinic):
    factory.user(clinic, email="admin@example.com")
    tokens = login(client, "admin@example.com").json()

    response = client.post(f"{API}/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=bearer(tokens))
    assert response.status_code == 200
    assert client.post(f"{API}/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401


def test_logout_all_revokes_every_session(client, factory, clinic):
    factory.user(clinic, email="admin@example.com")
    laptop = login(client, "admin@example.com").json()
    phone = login(client, "admin@example.com").json()

    response = client.post(f"{API}/auth/logout-all", headers=bearer(laptop))
    assert response.json() == {"count": 2}
    for session in (laptop, phone):
        assert client.post(f"{API}/auth/refresh", json={"refresh_token": session["refresh_token"]}).status_code == 401


def test_role_guard_reports_required_roles(client, factory, clinic, auth_headers):
    patient_user = factory.user(clinic, Role.PATIENT)

    response = client.get(f"{API}/audit-logs", headers=auth_headers(patient_user))

    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"
    assert response.json()["requiredRoles"] == ["CLINIC_ADMIN"]


def test_other_clinics_records_are_not_found(client, factory, clinic, auth_headers):
    admin = factory.user(clinic, Role.CLINIC_ADMIN)
    foreign = factory.patient(factory.clinic(name="Elsewhere"))

    response = client.get(f"{API}/patients/{foreign.id}", headers=auth_headers(admin))

    assert response.status_code == 404
    assert response.json() == {"detail": "Patient not found", "code": "NOT_FOUND"}


def test_register_refuses_a_patient_record_linked_to_another_account(client, db, factory, clinic):
    owner = factory.user(clinic, Role.PATIENT)
    factory.patient(clinic, user=owner, email="taken@example.com")

    response = client.post(f"{API}/auth/register", json={
        "clinic_id": clinic.id, "email": "taken@example.com", "password": PASSWORD,
    })

    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"
    assert db.query(models.User).filter_by(email="taken@example.com").count() == 0


def test_in_memory_store_evicts_expired_tokens():
    store = InMemoryTokenStore()
    store.store("stale", {"userId": "u1"}, ttl_seconds=0)
    store.store("fresh", {"userId": "u2"}, ttl_seconds=3600)

    assert store.get("fresh") == {"userId": "u2"}
    assert "stale" not in store._tokens
    assert "u1" not in store._by_user
    assert store.delete_all_for_user("u1") == 0
