# tests/test_audit.py
from datetime import datetime, timedelta, timezone

import pytest

from app import crud, models, schemas
from app.compliance_logger import ComplianceLogger
from app.errors import BadRequest, Forbidden, NotFound
from app.models import Role
from app.services import audit_service


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def clinic(factory):
    return factory.clinic()


@pytest.fixture
def admin(factory, clinic):
    return factory.user(clinic, Role.CLINIC_ADMIN)


def write(db, clinic, action="patient.update", entity="Patient", entity_id="p1", actor=None, created_at=None, **fields):
    return crud.save(db, models.AuditLog(
        clinic_id=clinic.id,
        actor_id=actor.id if actor else None,
        action=action,
        entity=entity,
        entity_id=entity_id,
        created_at=created_at or utc(2025, 5, 31, 12, 0),
        **fields,
    ))


def test_logger_records_request_metadata(db, clinic, admin):
    audit = ComplianceLogger(db, clinic_id=clinic.id, actor_id=admin.id, ip_address="10.0.0.1", user_agent="pytest")
    entry = audit.log("patient.create", "Patient", "p1", {"email": "jane@example.com"})

    assert entry.actor_id == admin.id
    assert (entry.ip_address, entry.user_agent) == ("10.0.0.1", "pytest")
    assert entry.details == {"email": "jane@example.com"}


def test_logger_swallows_write_failures(db):
    # clinic_id is NOT NULL
    assert ComplianceLogger(db, clinic_id=None).log("patient.create", "Patient", "p1") is None
    assert db.query(models.AuditLog).count() == 0


def test_list_is_newest_first_and_filtered(db, make_ctx, clinic, admin):
    old = write(db, clinic, action="patient.create", created_at=utc(2025, 5, 1))
    new = write(db, clinic, action="patient.update", created_at=utc(2025, 5, 20))
    write(db, clinic, action="doctor.update", entity="Doctor", entity_id="d1", created_at=utc(2025, 5, 10))
    ctx = make_ctx(admin)

    assert [e.id for e in audit_service.list_logs(ctx, entity="Patient")] == [new.id, old.id]
    assert [e.id for e in audit_service.list_logs(ctx, action="patient.create")] == [old.id]
    assert [e.id for e in audit_service.list_logs(ctx, entity="Patient", start_date=utc(2025, 5, 15))] == [new.id]
    assert [e.id for e in audit_service.list_logs(ctx, entity="Patient", limit=1, offset=1)] == [old.id]


def test_limit_is_bounded(make_ctx, admin):
    with pytest.raises(BadRequest):
        audit_service.list_logs(make_ctx(admin), limit=0)
    assert audit_service._clamp(10_000) == audit_service.MAX_LIMIT
    assert audit_service._clamp(None) == audit_service.DEFAULT_LIMIT


def test_other_clinics_are_invisible(factory, db, make_ctx, clinic, admin):
    elsewhere = factory.clinic(name="Elsewhere")
    foreign = write(db, elsewhere)
    write(db, clinic)

    assert len(audit_service.list_logs(make_ctx(admin))) == 1
    assert audit_service.count_logs(make_ctx(admin)) == 1
    with pytest.raises(NotFound, match="Audit log not found"):
        audit_service.get_log(make_ctx(admin), foreign.id)


def test_statistics_group_by_action_entity_and_actor(factory, db, make_ctx, clinic, admin):
    assistant = factory.user(clinic, Role.ASSISTANT)
    write(db, clinic, action="patient.update", actor=admin)
    write(db, clinic, action="patient.update", actor=admin)
    write(db, clinic, action="doctor.update", entity="Doctor", actor=assistant)

    stats = audit_service.statistics(make_ctx(admin), end_date=utc(2025, 6, 1))

    assert stats.total == 3
    assert [(s.key, s.count) for s in stats.by_action] == [("patient.update", 2), ("doctor.update", 1)]
    assert [(s.key, s.count) for s in stats.by_entity] == [("Patient", 2), ("Doctor", 1)]
    assert [(a.actor_id, a.email, a.count) for a in stats.by_actor] == [
        (admin.id, admin.email, 2),
        (assistant.id, assistant.email, 1),
    ]


def test_manual_entry_is_attributed_to_caller(db, make_ctx, admin):
    entry = audit_service.create_log(make_ctx(admin), schemas.AuditLogCreate(
        action="export.patients", entity="Patient", entity_id="all", metadata={"rows": 12},
    ))
    assert entry.actor_id == admin.id
    assert schemas.AuditLogResponse.model_validate(entry).metadata == {"rows": 12}


def test_manual_entry_checks_appointment_tenancy(factory, make_ctx, admin):
    elsewhere = factory.clinic(name="Elsewhere")
    appointment = factory.appointment(
        elsewhere, factory.doctor(elsewhere), factory.patient(elsewhere), utc(2025, 6, 2, 9, 0)
    )
    with pytest.raises(NotFound, match="Appointment not found"):
        audit_service.create_log(make_ctx(admin), schemas.AuditLogCreate(
            action="note", entity="Appointment", entity_id=appointment.id, appointment_id=appointment.id,
        ))


def test_deleting_an_entry_leaves_a_trace(db, make_ctx, clinic, admin):
    entry = write(db, clinic, action="patient.update", entity_id="p7")

    audit_service.delete_log(make_ctx(admin), entry.id)

    assert crud.get_audit_log(db, entry.id) is None
    trace = db.query(models.AuditLog).filter_by(action="auditLog.delete").one()
    assert trace.entity_id == entry.id
    assert trace.details == {"deletedAction": "patient.update", "deletedEntity": "Patient", "deletedEntityId": "p7"}


def test_delete_by_entity(db, make_ctx, clinic, admin):
    write(db, clinic, entity_id="p1")
    write(db, clinic, entity_id="p1", action="patient.create")
    write(db, clinic, entity_id="p2")

    assert audit_service.delete_by_entity(make_ctx(admin), "Patient", "p1") == 2
    assert audit_service.delete_by_entity(make_ctx(admin), "Patient", "missing") == 0

    traces = db.query(models.AuditLog).filter_by(action="auditLog.bulkDelete").all()
    assert sorted(t.entity_id for t in traces) == ["Patient:missing", "Patient:p1"]
    assert audit_service.count_logs(make_ctx(admin), entity="Patient") == 1


def test_archive_removes_rows_older_than_cutoff(db, make_ctx, clinic, admin):
    write(db, clinic, created_at=utc(2024, 1, 1))
    recent = write(db, clinic, created_at=utc(2025, 5, 30))

    assert audit_service.archive_old_logs(make_ctx(admin), days=30) == 1
    assert crud.get_audit_log(db, recent.id) is not None
    trace = db.query(models.AuditLog).filter_by(action="auditLog.archive").one()
    assert trace.details["retentionDays"] == 30
    assert trace.details["olderThan"] == (utc(2025, 6, 1, 8, 0) - timedelta(days=30)).isoformat()


@pytest.mark.parametrize("days", [0, -5])
def test_archive_rejects_non_positive_days(make_ctx, admin, days):
    with pytest.raises(BadRequest):
        audit_service.archive_old_logs(make_ctx(admin), days=days)


def test_appointment_trail_respects_doctor_ownership(factory, db, make_ctx, clinic, admin):
    doctor = factory.doctor(clinic)
    stranger = factory.doctor(clinic)
    appointment = factory.appointment(clinic, doctor, factory.patient(clinic), utc(2025, 6, 2, 9, 0))
    write(db, clinic, action="appointment.update", entity="Appointment", entity_id=appointment.id,
          appointment_id=appointment.id)

    assert len(audit_service.logs_by_appointment(make_ctx(admin), appointment.id)) == 1
    assert len(audit_service.logs_by_appointment(make_ctx(doctor.user), appointment.id)) == 1
    with pytest.raises(Forbidden):
        audit_service.logs_by_appointment(make_ctx(stranger.user), appointment.id)
