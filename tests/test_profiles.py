# tests/test_profiles.py
from datetime import datetime, timezone

import pytest

from app import models, schemas
from app.errors import BadRequest, Conflict, Forbidden, NotFound
from app.models import Role
from app.services import clinic_service, profile_service, user_service


@pytest.fixture
def clinic(factory):
    return factory.clinic()


@pytest.fixture
def admin(factory, clinic):
    return factory.user(clinic, Role.CLINIC_ADMIN)


# ---- doctors ----

def test_doctor_profile_needs_a_doctor_user(factory, make_ctx, db, clinic, admin):
    ctx = make_ctx(admin)
    with pytest.raises(BadRequest, match="DOCTOR role"):
        profile_service.create_doctor(ctx, schemas.DoctorCreate(user_id=admin.id))

    user = factory.user(clinic, Role.DOCTOR)
    doctor = profile_service.create_doctor(ctx, schemas.DoctorCreate(user_id=user.id, specialty="Cardiology"))
    assert doctor.clinic_id == clinic.id
    with pytest.raises(Conflict):
        profile_service.create_doctor(ctx, schemas.DoctorCreate(user_id=user.id))

    entry = db.query(models.AuditLog).filter_by(action="doctor.create").one()
    assert entry.details == {"userId": user.id, "specialty": "Cardiology"}


def test_doctor_with_appointments_cannot_be_deleted(factory, make_ctx, clinic, admin):
    doctor = factory.doctor(clinic)
    factory.appointment(clinic, doctor, factory.patient(clinic), datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc))

    with pytest.raises(Conflict) as excinfo:
        profile_service.delete_doctor(make_ctx(admin), doctor.id)
    assert excinfo.value.extensions == {"appointmentCount": 1}


def test_doctors_only_read_their_own_profile(factory, make_ctx, clinic):
    me = factory.doctor(clinic)
    colleague = factory.doctor(clinic)
    ctx = make_ctx(me.user)

    assert profile_service.my_doctor_profile(ctx).id == me.id
    assert profile_service.get_doctor(ctx, me.id).id == me.id
    with pytest.raises(Forbidden):
        profile_service.get_doctor(ctx, colleague.id)


# ---- assistants ----

def test_assistant_cannot_change_own_permissions(factory, make_ctx, clinic, admin):
    assistant = factory.assistant(clinic)
    ctx = make_ctx(assistant.user)

    updated = profile_service.update_assistant(ctx, assistant.id, schemas.AssistantUpdate(title="Front desk"))
    assert updated.title == "Front desk"
    with pytest.raises(Forbidden, match="permissions or active status"):
        profile_service.update_assistant(ctx, assistant.id, schemas.AssistantUpdate(permissions=["billing"]))

    granted = profile_service.update_assistant(make_ctx(admin), assistant.id, schemas.AssistantUpdate(permissions=["billing"]))
    assert granted.permissions == ["billing"]


def test_assistant_activation_toggles(factory, make_ctx, clinic, admin):
    assistant = factory.assistant(clinic)
    ctx = make_ctx(admin)

    with pytest.raises(BadRequest, match="already active"):
        profile_service.set_assistant_active(ctx, assistant.id, True)
    assert profile_service.set_assistant_active(ctx, assistant.id, False).active is False
    assert [a.id for a in profile_service.list_assistants(ctx, active=False)] == [assistant.id]


# ---- patients ----

async def test_patient_email_is_unique_per_clinic(factory, make_ctx, recorder, clinic, admin):
    factory.endpoint(clinic, events=["patient.created"])
    ctx = make_ctx(admin)
    created = await profile_service.create_patient(ctx, schemas.PatientCreate(
        first_name="Jane", last_name="Doe", email="jane@example.com",
    ))

    assert recorder.requests[0].headers["X-Webhook-Event"] == "patient.created"
    with pytest.raises(Conflict):
        await profile_service.create_patient(ctx, schemas.PatientCreate(
            first_name="Janet", last_name="Doe", email="jane@example.com",
        ))
    other = await profile_service.create_patient(ctx, schemas.PatientCreate(first_name="John", last_name="Doe"))
    with pytest.raises(Conflict):
        await profile_service.update_patient(ctx, other.id, schemas.PatientUpdate(email=created.email))


async def test_patients_edit_their_profile_but_not_notes(factory, make_ctx, clinic):
    user = factory.user(clinic, Role.PATIENT)
    patient = factory.patient(clinic, user=user)
    ctx = make_ctx(user)

    updated = await profile_service.update_patient(ctx, patient.id, schemas.PatientUpdate(phone="+15550199"))
    assert updated.phone == "+15550199"
    with pytest.raises(Forbidden, match="internal notes"):
        await profile_service.update_patient(ctx, patient.id, schemas.PatientUpdate(notes="allergic to penicillin"))


async def test_patients_cannot_edit_someone_else(factory, make_ctx, clinic):
    user = factory.user(clinic, Role.PATIENT)
    factory.patient(clinic, user=user)
    stranger = factory.patient(clinic)

    with pytest.raises(Forbidden):
        await profile_service.update_patient(make_ctx(user), stranger.id, schemas.PatientUpdate(phone="+15550000"))


def test_patient_listing_is_scoped_by_role(factory, make_ctx, clinic, admin):
    doctor = factory.doctor(clinic)
    seen = factory.patient(clinic, first_name="Seen")
    unseen = factory.patient(clinic, first_name="Unseen")
    factory.appointment(clinic, doctor, seen, datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc))
    patient_user = factory.user(clinic, Role.PATIENT)
    mine = factory.patient(clinic, user=patient_user)

    assert len(profile_service.list_patients(make_ctx(admin))) == 3
    assert [p.id for p in profile_service.list_patients(make_ctx(doctor.user))] == [seen.id]
    assert [p.id for p in profile_service.list_patients(make_ctx(patient_user))] == [mine.id]

    with pytest.raises(Forbidden):
        profile_service.get_patient(make_ctx(doctor.user), unseen.id)


def test_patient_search(factory, make_ctx, clinic, admin):
    ada = factory.patient(clinic, first_name="Ada", last_name="Lovelace", phone="+15550123")
    factory.patient(clinic, first_name="Alan", last_name="Turing", phone="+15550999")
    ctx = make_ctx(admin)

    assert [p.id for p in profile_service.list_patients(ctx, query="love")] == [ada.id]
    assert [p.id for p in profile_service.list_patients(ctx, phone="+15550123")] == [ada.id]


# ---- clinic ----

def test_clinic_settings_validation(make_ctx, db, clinic, admin):
    ctx = make_ctx(admin)
    with pytest.raises(BadRequest, match="Unknown timezone"):
        clinic_service.update_clinic(ctx, schemas.ClinicUpdate(timezone="Mars/Olympus_Mons"))
    with pytest.raises(BadRequest, match="cannot be empty"):
        clinic_service.update_clinic(ctx, schemas.ClinicUpdate(name="  "))

    updated = clinic_service.update_clinic(ctx, schemas.ClinicUpdate(timezone="Europe/Berlin", city="Berlin"))
    assert (updated.timezone, updated.city) == ("Europe/Berlin", "Berlin")
    entry = db.query(models.AuditLog).filter_by(action="clinic.update").one()
    assert entry.details == {"changes": ["city", "timezone"]}


# ---- users ----

def test_user_email_is_unique_per_clinic(factory, make_ctx, clinic, admin):
    ctx = make_ctx(admin)
    user_service.create_user(ctx, schemas.UserCreate(email="doc@example.com", password="long-enough-pw", role=Role.DOCTOR))
    with pytest.raises(Conflict):
        user_service.create_user(ctx, schemas.UserCreate(email="doc@example.com", password="long-enough-pw", role=Role.ASSISTANT))
    with pytest.raises(BadRequest, match="at least 8"):
        user_service.create_user(ctx, schemas.UserCreate(email="short@example.com", password="short", role=Role.DOCTOR))


def test_admins_cannot_lock_themselves_out(make_ctx, admin):
    ctx = make_ctx(admin)
    with pytest.raises(Forbidden):
        user_service.update_user(ctx, admin.id, schemas.UserUpdate(active=False))
    with pytest.raises(Forbidden):
        user_service.delete_user(ctx, admin.id)


def test_users_with_profiles_are_deactivated_not_deleted(factory, make_ctx, clinic, admin):
    doctor = factory.doctor(clinic)
    with pytest.raises(Conflict, match="Deactivate instead"):
        user_service.delete_user(make_ctx(admin), doctor.user_id)
    assert user_service.update_user(make_ctx(admin), doctor.user_id, schemas.UserUpdate(active=False)).active is False


def test_password_change_is_audited_without_the_hash(factory, make_ctx, db, clinic, admin):
    user = factory.user(clinic, Role.ASSISTANT)
    old_hash = user.password_hash

    updated = user_service.update_user(make_ctx(admin), user.id, schemas.UserUpdate(password="brand-new-password"))

    assert updated.password_hash != old_hash
    entry = db.query(models.AuditLog).filter_by(action="user.update").one()
    assert entry.details == {"changes": []}


def test_users_of_another_clinic_are_not_found(factory, make_ctx, admin):
    foreign = factory.user(factory.clinic(name="Elsewhere"), Role.DOCTOR)
    with pytest.raises(NotFound, match="User not found"):
        user_service.get_user(make_ctx(admin), foreign.id)
    assert foreign.id not in [u.id for u in user_service.list_users(make_ctx(admin))]
