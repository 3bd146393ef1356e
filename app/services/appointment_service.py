# app/services/appointment_service.py
"""Appointment booking, lifecycle transitions and doctor conflict detection."""
from datetime import datetime
from typing import List, Optional

import structlog

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, Conflict, NotFound
from ..models import AppointmentStatus as Status, Role
from ..permissions import enforce, ensure_found
from . import reminder_service, webhook_service

logger = structlog.get_logger(__name__)

CONFLICT_MESSAGE = "Doctor already has an appointment at this time"

# Allowed moves for each lifecycle action: target -> valid source states
TRANSITIONS = {
    Status.CONFIRMED: {Status.PENDING},
    Status.COMPLETED: {Status.PENDING, Status.CONFIRMED},
    Status.CANCELLED: {Status.PENDING, Status.CONFIRMED},
    Status.NOSHOW: {Status.PENDING, Status.CONFIRMED},
}

ACTION_NAMES = {
    Status.CONFIRMED: ("confirm", "confirmed"),
    Status.COMPLETED: ("complete", "completed"),
    Status.CANCELLED: ("cancel", "cancelled"),
    Status.NOSHOW: ("noshow", "noshow"),
}


def has_conflict(
    db, doctor_id: str, start: datetime, end: datetime, exclude_id: Optional[str] = None
) -> bool:
    """True if the doctor has a blocking appointment intersecting [start, end)."""
    return bool(crud.find_overlapping_appointments(db, doctor_id, start, end, exclude_id))


def _payload(appointment: models.Appointment) -> dict:
    return schemas.AppointmentResponse.model_validate(appointment).model_dump(mode="json")


def _validate_interval(ctx: RequestContext, start: datetime, end: datetime) -> None:
    if start >= end:
        raise BadRequest("Start time must be before end time")
    if start < ctx.now():
        raise BadRequest("Cannot create appointments in the past")


def _check_transition(current: Status, target: Status) -> None:
    if current == target and target == Status.CANCELLED:
        raise BadRequest("Appointment is already cancelled")
    if current not in TRANSITIONS.get(target, ()):
        raise BadRequest(f"Cannot change appointment status from {current.value} to {target.value}")


def _is_owner(ctx: RequestContext, appointment: models.Appointment) -> bool:
    if ctx.role == Role.DOCTOR:
        doctor = ctx.current_doctor()
        return doctor is not None and appointment.doctor_id == doctor.id
    if ctx.role == Role.PATIENT:
        patient = ctx.current_patient()
        return patient is not None and appointment.patient_id == patient.id
    return True


def _load(ctx: RequestContext, appointment_id: str) -> models.Appointment:
    return ensure_found(ctx.user, crud.get_appointment(ctx.db, appointment_id), "Appointment")


# ==================== Queries ====================

def get_appointment(ctx: RequestContext, appointment_id: str) -> models.Appointment:
    appointment = _load(ctx, appointment_id)
    enforce(ctx.user, owner_roles=(Role.DOCTOR, Role.PATIENT), is_owner=_is_owner(ctx, appointment))
    return appointment


def list_appointments(
    ctx: RequestContext,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    status: Optional[Status] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Appointment]:
    # Self-scoped roles only ever see their own rows, whatever filter they send
    if ctx.role == Role.DOCTOR:
        doctor = ctx.current_doctor()
        if doctor is None:
            return []
        doctor_id = doctor.id
    elif ctx.role == Role.PATIENT:
        patient = ctx.current_patient()
        if patient is None:
            return []
        patient_id = patient.id
    return crud.get_appointments(
        ctx.db, ctx.clinic_id,
        doctor_id=doctor_id, patient_id=patient_id, status=status,
        start_date=start_date, end_date=end_date, skip=skip, limit=limit,
    )


def my_appointments(ctx: RequestContext, status: Optional[Status] = None) -> List[models.Appointment]:
    patient = ctx.current_patient()
    if patient is None:
        raise NotFound("Patient profile not found")
    return crud.get_appointments(ctx.db, ctx.clinic_id, patient_id=patient.id, status=status, limit=None)


def doctor_appointments(
    ctx: RequestContext,
    doctor_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[models.Appointment]:
    doctor = ensure_found(ctx.user, crud.get_doctor(ctx.db, doctor_id), "Doctor")
    if ctx.role == Role.DOCTOR:
        own = ctx.current_doctor()
        enforce(ctx.user, owner_roles=(Role.DOCTOR,), is_owner=own is not None and own.id == doctor.id)
    return crud.get_appointments(
        ctx.db, ctx.clinic_id, doctor_id=doctor.id, start_date=start_date, end_date=end_date, limit=None
    )


# ==================== Mutations ====================

async def create_appointment(ctx: RequestContext, data: schemas.AppointmentCreate) -> models.Appointment:
    _validate_interval(ctx, data.start, data.end)
    patient = ensure_found(ctx.user, crud.get_patient(ctx.db, data.patient_id), "Patient")

    # Lock first, then check: the overlap query and the insert share one transaction
    doctor = crud.lock_doctor(ctx.db, data.doctor_id)
    ensure_found(ctx.user, doctor, "Doctor")
    if has_conflict(ctx.db, doctor.id, data.start, data.end):
        ctx.db.rollback()
        raise Conflict(CONFLICT_MESSAGE)

    appointment = crud.create_appointment(
        ctx.db,
        clinic_id=ctx.clinic_id,
        doctor_id=doctor.id,
        patient_id=patient.id,
        start=data.start,
        end=data.end,
        status=data.status or Status.PENDING,
        source=data.source,
        reason=data.reason,
        notes=data.notes,
        created_by_id=ctx.user.id,
    )
    logger.info("appointment_created", appointment_id=appointment.id, doctor_id=doctor.id)

    reminders = reminder_service.schedule_for_appointment(ctx, appointment)
    ctx.audit.log("appointment.create", "Appointment", appointment.id, {
        "doctorId": appointment.doctor_id,
        "patientId": appointment.patient_id,
        "start": appointment.start.isoformat(),
        "end": appointment.end.isoformat(),
        "remindersScheduled": len(reminders),
    }, appointment_id=appointment.id)
    await webhook_service.trigger(ctx, "appointment.created", _payload(appointment))
    return appointment


async def update_appointment(ctx: RequestContext, appointment_id: str, data: schemas.AppointmentUpdate) -> models.Appointment:
    appointment = _load(ctx, appointment_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    new_start = changes.get("start", appointment.start)
    new_end = changes.get("end", appointment.end)
    times_changed = new_start != appointment.start or new_end != appointment.end
    start_changed = new_start != appointment.start

    if "status" in changes and changes["status"] != appointment.status:
        _check_transition(appointment.status, changes["status"])
    else:
        changes.pop("status", None)

    if times_changed:
        _validate_interval(ctx, new_start, new_end)
        crud.lock_doctor(ctx.db, appointment.doctor_id)
        if has_conflict(ctx.db, appointment.doctor_id, new_start, new_end, exclude_id=appointment.id):
            ctx.db.rollback()
            raise Conflict(CONFLICT_MESSAGE)

    appointment = crud.update(ctx.db, appointment, changes)

    if start_changed and appointment.status in (Status.PENDING, Status.CONFIRMED):
        reminder_service.reschedule(ctx, appointment)
    elif appointment.status in (Status.CANCELLED, Status.NOSHOW):
        reminder_service.skip_pending(ctx, appointment)

    ctx.audit.log("appointment.update", "Appointment", appointment.id, {
        "changes": sorted(changes),
    }, appointment_id=appointment.id)
    await webhook_service.trigger(ctx, "appointment.updated", _payload(appointment))
    return appointment


async def _transition(
    ctx: RequestContext,
    appointment_id: str,
    target: Status,
    owner_roles=(),
    reason: Optional[str] = None,
) -> models.Appointment:
    appointment = _load(ctx, appointment_id)
    if owner_roles:
        enforce(ctx.user, owner_roles=owner_roles, is_owner=_is_owner(ctx, appointment))
    _check_transition(appointment.status, target)

    changes = {"status": target}
    if reason:
        note = f"Cancellation reason: {reason}"
        changes["notes"] = f"{appointment.notes}\n\n{note}" if appointment.notes else note
    previous = appointment.status
    appointment = crud.update(ctx.db, appointment, changes)

    if target in (Status.CANCELLED, Status.NOSHOW):
        reminder_service.skip_pending(ctx, appointment)

    verb, event = ACTION_NAMES[target]
    metadata = {"previousStatus": previous.value, "status": target.value}
    if reason:
        metadata["reason"] = reason
    ctx.audit.log(f"appointment.{verb}", "Appointment", appointment.id, metadata, appointment_id=appointment.id)
    await webhook_service.trigger(ctx, f"appointment.{event}", _payload(appointment))
    return appointment


async def cancel_appointment(ctx: RequestContext, appointment_id: str, reason: Optional[str] = None) -> models.Appointment:
    return await _transition(ctx, appointment_id, Status.CANCELLED, owner_roles=(Role.PATIENT,), reason=reason)


async def confirm_appointment(ctx: RequestContext, appointment_id: str) -> models.Appointment:
    return await _transition(ctx, appointment_id, Status.CONFIRMED)


async def complete_appointment(ctx: RequestContext, appointment_id: str) -> models.Appointment:
    return await _transition(ctx, appointment_id, Status.COMPLETED, owner_roles=(Role.DOCTOR,))


async def mark_no_show(ctx: RequestContext, appointment_id: str) -> models.Appointment:
    return await _transition(ctx, appointment_id, Status.NOSHOW, owner_roles=(Role.DOCTOR,))


def delete_appointment(ctx: RequestContext, appointment_id: str) -> None:
    appointment = _load(ctx, appointment_id)
    details = {
        "doctorId": appointment.doctor_id,
        "patientId": appointment.patient_id,
        "start": appointment.start.isoformat(),
        "status": appointment.status.value,
    }
    crud.delete(ctx.db, appointment)
    # The appointment row is gone, so the trail entry cannot reference it by foreign key
    ctx.audit.log("appointment.delete", "Appointment", appointment_id, details)
