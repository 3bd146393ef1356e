# app/services/reminder_service.py
from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, Conflict
from ..models import ReminderStatus, Role
from ..permissions import enforce, ensure_found
from . import webhook_service
from .notification_service import NotificationError, NotificationSender, render_reminder

logger = structlog.get_logger(__name__)


# ==================== Reminder rules ====================

def _validate_offset(offset_min: int) -> None:
    if offset_min is None or offset_min <= 0:
        raise BadRequest("Offset must be greater than 0 minutes")


def _ensure_rule_key_free(ctx: RequestContext, offset_min: int, channel, exclude_id: Optional[str] = None) -> None:
    if crud.get_reminder_rule_by_key(ctx.db, ctx.clinic_id, offset_min, channel, exclude_id):
        raise Conflict(f"A reminder rule with offset {offset_min} minutes and channel {channel.value} already exists")


def list_rules(ctx: RequestContext, active: Optional[bool] = None) -> List[models.ReminderRule]:
    return crud.get_reminder_rules(ctx.db, ctx.clinic_id, active=active)


def get_rule(ctx: RequestContext, rule_id: str) -> models.ReminderRule:
    return ensure_found(ctx.user, crud.get_reminder_rule(ctx.db, rule_id), "Reminder rule")


def create_rule(ctx: RequestContext, data: schemas.ReminderRuleCreate) -> models.ReminderRule:
    _validate_offset(data.offset_min)
    _ensure_rule_key_free(ctx, data.offset_min, data.channel)
    rule = crud.save(
        ctx.db,
        models.ReminderRule(clinic_id=ctx.clinic_id, **data.model_dump()),
        "A reminder rule with this offset and channel already exists",
    )
    ctx.audit.log("reminderRule.create", "ReminderRule", rule.id, {
        "offsetMin": rule.offset_min,
        "channel": rule.channel.value,
    })
    return rule


def update_rule(ctx: RequestContext, rule_id: str, data: schemas.ReminderRuleUpdate) -> models.ReminderRule:
    rule = get_rule(ctx, rule_id)
    changes = data.model_dump(exclude_unset=True)
    offset_min = changes.get("offset_min", rule.offset_min)
    channel = changes.get("channel") or rule.channel
    if "offset_min" in changes:
        _validate_offset(offset_min)
    if "offset_min" in changes or "channel" in changes:
        _ensure_rule_key_free(ctx, offset_min, channel, exclude_id=rule.id)

    rule = crud.update(ctx.db, rule, changes, "A reminder rule with this offset and channel already exists")
    ctx.audit.log("reminderRule.update", "ReminderRule", rule.id, {"changes": sorted(changes)})
    return rule


def delete_rule(ctx: RequestContext, rule_id: str) -> None:
    rule = get_rule(ctx, rule_id)
    details = {"offsetMin": rule.offset_min, "channel": rule.channel.value}
    crud.delete(ctx.db, rule)
    ctx.audit.log("reminderRule.delete", "ReminderRule", rule_id, details)


def set_rule_active(ctx: RequestContext, rule_id: str, active: bool) -> models.ReminderRule:
    rule = get_rule(ctx, rule_id)
    if rule.active == active:
        raise BadRequest("Reminder rule is already active" if active else "Reminder rule is already inactive")
    rule = crud.update(ctx.db, rule, {"active": active})
    ctx.audit.log("reminderRule.activate" if active else "reminderRule.deactivate", "ReminderRule", rule.id)
    return rule


# ==================== Reminder generation ====================

def _build_reminders(
    db, appointment: models.Appointment, rules: List[models.ReminderRule], now: datetime
) -> List[models.Reminder]:
    """One SCHEDULED reminder per rule, skipping existing and past-due ones."""
    created = []
    for rule in rules:
        scheduled_for = appointment.start - timedelta(minutes=rule.offset_min)
        if crud.reminder_exists(db, appointment.id, rule.id):
            continue
        if scheduled_for <= now:
            continue
        reminder = models.Reminder(
            appointment_id=appointment.id,
            rule_id=rule.id,
            channel=rule.channel,
            scheduled_for=scheduled_for,
            status=ReminderStatus.SCHEDULED,
        )
        db.add(reminder)
        created.append(reminder)
    if created:
        crud.commit(db)
        for reminder in created:
            db.refresh(reminder)
    return created


def generate(ctx: RequestContext, appointment_id: str) -> List[models.Reminder]:
    """Create the reminders an appointment is owed under the clinic's active rules.

    Idempotent: a second call after full generation returns an empty list.
    """
    appointment = ensure_found(ctx.user, crud.get_appointment(ctx.db, appointment_id), "Appointment")
    now = ctx.now()
    if appointment.start <= now:
        raise BadRequest("Cannot generate reminders for past appointments")

    rules = crud.get_reminder_rules(ctx.db, ctx.clinic_id, active=True)
    if not rules:
        raise BadRequest("No active reminder rules found for this clinic")

    created = _build_reminders(ctx.db, appointment, rules, now)
    ctx.audit.log("reminder.generate", "Appointment", appointment.id, {
        "count": len(created),
        "reminderIds": [r.id for r in created],
    }, appointment_id=appointment.id)
    return created


def schedule_for_appointment(ctx: RequestContext, appointment: models.Appointment) -> List[models.Reminder]:
    """Best effort generation used as a side effect of booking; never raises for missing rules."""
    if appointment.start <= ctx.now():
        return []
    rules = crud.get_reminder_rules(ctx.db, appointment.clinic_id, active=True)
    if not rules:
        return []
    return _build_reminders(ctx.db, appointment, rules, ctx.now())


def skip_pending(ctx: RequestContext, appointment: models.Appointment) -> int:
    """Mark every still-scheduled reminder of `appointment` as SKIPPED."""
    pending = crud.get_scheduled_reminders(ctx.db, appointment.id)
    for reminder in pending:
        reminder.status = ReminderStatus.SKIPPED
    if pending:
        crud.commit(ctx.db)
    return len(pending)


def reschedule(ctx: RequestContext, appointment: models.Appointment) -> List[models.Reminder]:
    """Drop scheduled reminders computed for the old start time and regenerate."""
    for reminder in crud.get_scheduled_reminders(ctx.db, appointment.id):
        ctx.db.delete(reminder)
    crud.commit(ctx.db)
    return schedule_for_appointment(ctx, appointment)


# ==================== Reminder queries and transitions ====================

def _own_doctor_id(ctx: RequestContext) -> Optional[str]:
    doctor = ctx.current_doctor()
    return doctor.id if doctor else None


def list_reminders(
    ctx: RequestContext,
    appointment_id: Optional[str] = None,
    status: Optional[ReminderStatus] = None,
    channel: Optional[models.ReminderChannel] = None,
    scheduled_after: Optional[datetime] = None,
    scheduled_before: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Reminder]:
    doctor_id = None
    if ctx.role == Role.DOCTOR:
        doctor_id = _own_doctor_id(ctx)
        if doctor_id is None:
            return []
    return crud.get_reminders(
        ctx.db, ctx.clinic_id,
        appointment_id=appointment_id,
        status=status,
        channel=channel,
        scheduled_after=scheduled_after,
        scheduled_before=scheduled_before,
        doctor_id=doctor_id,
        skip=skip,
        limit=limit,
    )


def get_reminder(ctx: RequestContext, reminder_id: str) -> models.Reminder:
    reminder = crud.get_reminder(ctx.db, reminder_id)
    appointment = reminder.appointment if reminder else None
    ensure_found(ctx.user, appointment, "Reminder")
    if ctx.role == Role.DOCTOR:
        enforce(ctx.user, owner_roles=(Role.DOCTOR,), is_owner=appointment.doctor_id == _own_doctor_id(ctx))
    return reminder


def _transition(ctx: RequestContext, reminder_id: str, target: ReminderStatus, verb: str, action: str, **fields) -> models.Reminder:
    reminder = get_reminder(ctx, reminder_id)
    if reminder.status != ReminderStatus.SCHEDULED:
        raise BadRequest(f"Only scheduled reminders can be {verb}")
    reminder = crud.update(ctx.db, reminder, dict(status=target, **fields))
    ctx.audit.log(action, "Reminder", reminder.id, {
        "status": target.value,
        **({"error": fields["error"]} if fields.get("error") else {}),
    }, appointment_id=reminder.appointment_id)
    return reminder


def cancel_reminder(ctx: RequestContext, reminder_id: str) -> models.Reminder:
    return _transition(ctx, reminder_id, ReminderStatus.SKIPPED, "cancelled", "reminder.cancel")


def mark_sent(ctx: RequestContext, reminder_id: str) -> models.Reminder:
    return _transition(ctx, reminder_id, ReminderStatus.SENT, "marked as sent", "reminder.markSent", sent_at=ctx.now())


def mark_failed(ctx: RequestContext, reminder_id: str, error: str) -> models.Reminder:
    if not error or not error.strip():
        raise BadRequest("An error message is required")
    return _transition(ctx, reminder_id, ReminderStatus.FAILED, "marked as failed", "reminder.markFailed", error=error.strip())


def delete_reminder(ctx: RequestContext, reminder_id: str) -> None:
    reminder = get_reminder(ctx, reminder_id)
    appointment_id = reminder.appointment_id
    crud.delete(ctx.db, reminder)
    ctx.audit.log("reminder.delete", "Reminder", reminder_id, appointment_id=appointment_id)


# ==================== Due reminder delivery ====================

async def dispatch_due(
    ctx: RequestContext, sender: NotificationSender, before: Optional[datetime] = None, limit: int = 100
) -> schemas.ReminderDispatchResult:
    """Deliver the clinic's SCHEDULED reminders that are due by `before` (default: now)."""
    cutoff = before or ctx.now()
    clinic = crud.get_clinic(ctx.db, ctx.clinic_id)
    sent = failed = 0

    for reminder in crud.get_due_reminders(ctx.db, cutoff, clinic_id=ctx.clinic_id, limit=limit):
        appointment = reminder.appointment
        template = reminder.rule.template if reminder.rule else None
        try:
            message = render_reminder(template, appointment, clinic)
            await sender.send(reminder.channel, appointment.patient, message)
        except NotificationError as exc:
            logger.warning("reminder_delivery_failed", reminder_id=reminder.id, error=str(exc))
            reminder = mark_failed(ctx, reminder.id, str(exc))
            failed += 1
            event = "reminder.failed"
        else:
            reminder = mark_sent(ctx, reminder.id)
            sent += 1
            event = "reminder.sent"
        await webhook_service.trigger(
            ctx, event, schemas.ReminderResponse.model_validate(reminder).model_dump(mode="json")
        )

    logger.info("due_reminders_dispatched", clinic_id=ctx.clinic_id, sent=sent, failed=failed)
    return schemas.ReminderDispatchResult(sent=sent, failed=failed)
