# app/services/weekly_slot_service.py
from typing import List, Optional

import structlog

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, ClinicAPIError, Conflict, NotFound
from ..models import Role
from ..permissions import enforce, ensure_found
from .overlap import intervals_overlap, is_time_of_day

logger = structlog.get_logger(__name__)

DUPLICATE_MESSAGE = "This exact time slot already exists for this doctor"


def _validate(weekday: int, start_time: str, end_time: str, duration_min: Optional[int]) -> None:
    if weekday is None or not 1 <= weekday <= 7:
        raise BadRequest("Weekday must be between 1 (Monday) and 7 (Sunday)")
    if not is_time_of_day(start_time) or not is_time_of_day(end_time):
        raise BadRequest("Time must be in HH:MM format (24-hour)")
    if start_time >= end_time:
        raise BadRequest("Start time must be before end time")
    if duration_min is not None and duration_min <= 0:
        raise BadRequest("Duration must be greater than 0 minutes")


def _check_collisions(
    ctx: RequestContext, doctor_id: str, weekday: int, start_time: str, end_time: str, exclude_id: Optional[str] = None
) -> None:
    """Reject exact duplicates first, then overlaps with the doctor's other active slots that day."""
    if crud.find_exact_slot(ctx.db, doctor_id, weekday, start_time, end_time, exclude_id):
        raise Conflict(DUPLICATE_MESSAGE)
    for other in crud.get_active_slots_for_day(ctx.db, doctor_id, weekday, exclude_id):
        if intervals_overlap(other.start_time, other.end_time, start_time, end_time):
            raise Conflict(
                f"Time slot {start_time}-{end_time} overlaps with an existing slot "
                f"({other.start_time}-{other.end_time})",
            )


def _resolve_doctor(ctx: RequestContext, doctor_id: str) -> models.Doctor:
    doctor = ensure_found(ctx.user, crud.get_doctor(ctx.db, doctor_id), "Doctor")
    if ctx.role == Role.DOCTOR:
        own = ctx.current_doctor()
        enforce(ctx.user, owner_roles=(Role.DOCTOR,), is_owner=own is not None and own.id == doctor.id)
    return doctor


def _load(ctx: RequestContext, slot_id: str, owned: bool = False) -> models.WeeklySlot:
    slot = crud.get_weekly_slot(ctx.db, slot_id)
    if slot is None:
        raise NotFound("Weekly slot not found")
    ensure_found(ctx.user, slot, "Weekly slot", clinic_id=slot.doctor.clinic_id)
    if owned and ctx.role == Role.DOCTOR:
        own = ctx.current_doctor()
        enforce(ctx.user, owner_roles=(Role.DOCTOR,), is_owner=own is not None and own.id == slot.doctor_id)
    return slot


# ==================== Queries ====================

def list_slots(
    ctx: RequestContext, doctor_id: Optional[str] = None, weekday: Optional[int] = None, active: Optional[bool] = None
) -> List[models.WeeklySlot]:
    return crud.get_weekly_slots(ctx.db, ctx.clinic_id, doctor_id=doctor_id, weekday=weekday, active=active)


def get_slot(ctx: RequestContext, slot_id: str) -> models.WeeklySlot:
    return _load(ctx, slot_id)


def slots_by_doctor(ctx: RequestContext, doctor_id: str, active_only: bool = False) -> List[models.WeeklySlot]:
    doctor = ensure_found(ctx.user, crud.get_doctor(ctx.db, doctor_id), "Doctor")
    return crud.get_weekly_slots(ctx.db, ctx.clinic_id, doctor_id=doctor.id, active=True if active_only else None)


def my_slots(ctx: RequestContext) -> List[models.WeeklySlot]:
    doctor = ctx.current_doctor()
    if doctor is None:
        raise NotFound("Doctor profile not found")
    return crud.get_weekly_slots(ctx.db, ctx.clinic_id, doctor_id=doctor.id)


# ==================== Mutations ====================

def _insert(ctx: RequestContext, doctor: models.Doctor, data: schemas.WeeklySlotData) -> models.WeeklySlot:
    _validate(data.weekday, data.start_time, data.end_time, data.duration_min)
    crud.lock_doctor(ctx.db, doctor.id)
    if data.active:
        _check_collisions(ctx, doctor.id, data.weekday, data.start_time, data.end_time)
    elif crud.find_exact_slot(ctx.db, doctor.id, data.weekday, data.start_time, data.end_time):
        raise Conflict(DUPLICATE_MESSAGE)
    return crud.save(ctx.db, models.WeeklySlot(doctor_id=doctor.id, **data.model_dump()), DUPLICATE_MESSAGE)


def create_slot(ctx: RequestContext, data: schemas.WeeklySlotCreate) -> models.WeeklySlot:
    doctor = _resolve_doctor(ctx, data.doctor_id)
    try:
        slot = _insert(ctx, doctor, schemas.WeeklySlotData(**data.model_dump(exclude={"doctor_id"})))
    except ClinicAPIError:
        ctx.db.rollback()
        raise
    ctx.audit.log("weeklySlot.create", "WeeklySlot", slot.id, {
        "doctorId": slot.doctor_id,
        "weekday": slot.weekday,
        "startTime": slot.start_time,
        "endTime": slot.end_time,
    })
    return slot


def bulk_create_slots(ctx: RequestContext, data: schemas.WeeklySlotBulkCreate) -> schemas.WeeklySlotBulkResult:
    """Create each slot independently; failures are collected, not fatal.

    This is the one partial-success mutation: callers compare len(created)
    with `requested` to spot rejected items.
    """
    doctor = _resolve_doctor(ctx, data.doctor_id)
    created: List[models.WeeklySlot] = []
    errors: List[str] = []

    for index, item in enumerate(data.slots):
        try:
            created.append(_insert(ctx, doctor, item))
        except ClinicAPIError as exc:
            ctx.db.rollback()
            errors.append(f"Slot {index + 1} (weekday {item.weekday}, {item.start_time}-{item.end_time}): {exc.message}")

    ctx.audit.log("weeklySlot.bulkCreate", "WeeklySlot", doctor.id, {
        "doctorId": doctor.id,
        "created": len(created),
        "errors": len(errors),
        "errorMessages": errors,
    })
    if not created and errors:
        raise BadRequest("Failed to create any slots", errors=errors)
    if errors:
        logger.info("weekly_slots_partially_created", doctor_id=doctor.id, created=len(created), errors=len(errors))
    return schemas.WeeklySlotBulkResult(
        requested=len(data.slots),
        created=[schemas.WeeklySlotResponse.model_validate(s) for s in created],
        errors=errors,
    )


def update_slot(ctx: RequestContext, slot_id: str, data: schemas.WeeklySlotUpdate) -> models.WeeklySlot:
    slot = _load(ctx, slot_id, owned=True)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    weekday = changes.get("weekday", slot.weekday)
    start_time = changes.get("start_time", slot.start_time)
    end_time = changes.get("end_time", slot.end_time)
    active = changes.get("active", slot.active)
    _validate(weekday, start_time, end_time, changes.get("duration_min", slot.duration_min))

    try:
        crud.lock_doctor(ctx.db, slot.doctor_id)
        if active:
            _check_collisions(ctx, slot.doctor_id, weekday, start_time, end_time, exclude_id=slot.id)
        elif crud.find_exact_slot(ctx.db, slot.doctor_id, weekday, start_time, end_time, exclude_id=slot.id):
            raise Conflict(DUPLICATE_MESSAGE)
    except ClinicAPIError:
        ctx.db.rollback()
        raise

    slot = crud.update(ctx.db, slot, changes, DUPLICATE_MESSAGE)
    ctx.audit.log("weeklySlot.update", "WeeklySlot", slot.id, {"changes": sorted(changes)})
    return slot


def delete_slot(ctx: RequestContext, slot_id: str) -> None:
    slot = _load(ctx, slot_id, owned=True)
    details = {
        "doctorId": slot.doctor_id,
        "weekday": slot.weekday,
        "startTime": slot.start_time,
        "endTime": slot.end_time,
    }
    crud.delete(ctx.db, slot)
    ctx.audit.log("weeklySlot.delete", "WeeklySlot", slot_id, details)


def set_active(ctx: RequestContext, slot_id: str, active: bool) -> models.WeeklySlot:
    slot = _load(ctx, slot_id, owned=True)
    if active and not slot.active:
        try:
            crud.lock_doctor(ctx.db, slot.doctor_id)
            _check_collisions(ctx, slot.doctor_id, slot.weekday, slot.start_time, slot.end_time, exclude_id=slot.id)
        except Conflict as exc:
            ctx.db.rollback()
            if exc.message == DUPLICATE_MESSAGE:
                raise
            raise Conflict("Cannot activate slot: it overlaps with an existing active slot")
    slot = crud.update(ctx.db, slot, {"active": active})
    ctx.audit.log("weeklySlot.activate" if active else "weeklySlot.deactivate", "WeeklySlot", slot.id)
    return slot
