# app/crud.py
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from . import models
from .errors import Conflict, CRUDError

logger = logging.getLogger(__name__)

ACTIVE_APPOINTMENT_EXCLUDED = (models.AppointmentStatus.CANCELLED, models.AppointmentStatus.NOSHOW)


def commit(db: Session, obj=None, conflict_message: str = "Record already exists"):
    """Commit the session and refresh `obj`, translating database failures."""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity error on commit: {e.orig}")
        raise Conflict(conflict_message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error on commit: {e}")
        raise CRUDError("A database error occurred.")
    if obj is not None:
        db.refresh(obj)
    return obj


def _apply_fields(obj, fields: Dict[str, Any]):
    for key, value in fields.items():
        setattr(obj, key, value)
    return obj


def save(db: Session, obj, conflict_message: str = "Record already exists"):
    db.add(obj)
    return commit(db, obj, conflict_message)


def update(db: Session, obj, fields: Dict[str, Any], conflict_message: str = "Record already exists"):
    _apply_fields(obj, fields)
    return commit(db, obj, conflict_message)


def delete(db: Session, obj) -> None:
    db.delete(obj)
    commit(db)


def _page(query: Query, skip: int, limit: Optional[int]) -> Query:
    if skip:
        query = query.offset(skip)
    if limit:
        query = query.limit(limit)
    return query


# ==================== CLINICS ====================

def get_clinic(db: Session, clinic_id: str) -> Optional[models.Clinic]:
    return db.get(models.Clinic, clinic_id)


def create_clinic(db: Session, **fields) -> models.Clinic:
    return save(db, models.Clinic(**fields))


# ==================== USERS ====================

def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_users_by_email(db: Session, email: str, clinic_id: Optional[str] = None) -> List[models.User]:
    query = db.query(models.User).filter(func.lower(models.User.email) == email.strip().lower())
    if clinic_id:
        query = query.filter(models.User.clinic_id == clinic_id)
    return query.order_by(models.User.created_at).all()


def get_user_by_email_in_clinic(db: Session, email: str, clinic_id: str) -> Optional[models.User]:
    users = get_users_by_email(db, email, clinic_id)
    return users[0] if users else None


def get_users(
    db: Session,
    clinic_id: str,
    role: Optional[models.Role] = None,
    active: Optional[bool] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.User]:
    query = db.query(models.User).filter(models.User.clinic_id == clinic_id)
    if role is not None:
        query = query.filter(models.User.role == role)
    if active is not None:
        query = query.filter(models.User.active == active)
    return _page(query.order_by(models.User.created_at.desc()), skip, limit).all()


def create_user(db: Session, **fields) -> models.User:
    fields["email"] = fields["email"].strip().lower()
    return save(db, models.User(**fields), "A user with this email already exists in this clinic")


# ==================== DOCTORS ====================

def get_doctor(db: Session, doctor_id: str) -> Optional[models.Doctor]:
    return db.get(models.Doctor, doctor_id)


def get_doctor_by_user_id(db: Session, user_id: str) -> Optional[models.Doctor]:
    return db.query(models.Doctor).filter(models.Doctor.user_id == user_id).first()


def lock_doctor(db: Session, doctor_id: str) -> Optional[models.Doctor]:
    """Row-lock the doctor for the rest of the transaction (SELECT ... FOR UPDATE).

    Every booking path for a doctor takes this lock before its overlap check,
    so concurrent bookings for the same doctor are serialized.
    """
    return db.query(models.Doctor).filter(models.Doctor.id == doctor_id).with_for_update().first()


def get_doctors(db: Session, clinic_id: str, skip: int = 0, limit: int = 100) -> List[models.Doctor]:
    query = db.query(models.Doctor).filter(models.Doctor.clinic_id == clinic_id)
    return _page(query.order_by(models.Doctor.created_at), skip, limit).all()


def create_doctor(db: Session, **fields) -> models.Doctor:
    return save(db, models.Doctor(**fields), "A doctor profile already exists for this user")


def count_doctor_appointments(db: Session, doctor_id: str) -> int:
    return db.query(func.count(models.Appointment.id)).filter(models.Appointment.doctor_id == doctor_id).scalar()


# ==================== ASSISTANTS ====================

def get_assistant(db: Session, assistant_id: str) -> Optional[models.Assistant]:
    return db.get(models.Assistant, assistant_id)


def get_assistant_by_user_id(db: Session, user_id: str) -> Optional[models.Assistant]:
    return db.query(models.Assistant).filter(models.Assistant.user_id == user_id).first()


def get_assistants(db: Session, clinic_id: str, active: Optional[bool] = None, skip: int = 0, limit: int = 100) -> List[models.Assistant]:
    query = db.query(models.Assistant).filter(models.Assistant.clinic_id == clinic_id)
    if active is not None:
        query = query.filter(models.Assistant.active == active)
    return _page(query.order_by(models.Assistant.created_at), skip, limit).all()


def create_assistant(db: Session, **fields) -> models.Assistant:
    return save(db, models.Assistant(**fields), "An assistant profile already exists for this user")


def count_appointments_created_by(db: Session, user_id: str) -> int:
    return db.query(func.count(models.Appointment.id)).filter(models.Appointment.created_by_id == user_id).scalar()


# ==================== PATIENTS ====================

def get_patient(db: Session, patient_id: str) -> Optional[models.Patient]:
    return db.get(models.Patient, patient_id)


def get_patient_by_user_id(db: Session, user_id: str) -> Optional[models.Patient]:
    return db.query(models.Patient).filter(models.Patient.user_id == user_id).first()


def get_patient_by_email(db: Session, clinic_id: str, email: str, exclude_id: Optional[str] = None) -> Optional[models.Patient]:
    query = db.query(models.Patient).filter(
        models.Patient.clinic_id == clinic_id,
        func.lower(models.Patient.email) == email.strip().lower(),
    )
    if exclude_id:
        query = query.filter(models.Patient.id != exclude_id)
    return query.first()


def search_patients(
    db: Session,
    clinic_id: str,
    query_text: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    doctor_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Patient]:
    query = db.query(models.Patient).filter(models.Patient.clinic_id == clinic_id)
    if query_text:
        like = f"%{query_text.strip()}%"
        query = query.filter(or_(
            models.Patient.first_name.ilike(like),
            models.Patient.last_name.ilike(like),
            models.Patient.email.ilike(like),
            models.Patient.phone.ilike(like),
        ))
    if email:
        query = query.filter(func.lower(models.Patient.email) == email.strip().lower())
    if phone:
        query = query.filter(models.Patient.phone == phone.strip())
    if doctor_id:
        seen_by_doctor = db.query(models.Appointment.patient_id).filter(models.Appointment.doctor_id == doctor_id)
        query = query.filter(models.Patient.id.in_(seen_by_doctor))
    ordered = query.order_by(models.Patient.last_name, models.Patient.first_name)
    return _page(ordered, skip, limit).all()


def create_patient(db: Session, **fields) -> models.Patient:
    return save(db, models.Patient(**fields), "A patient with this email already exists in this clinic")


def count_patient_appointments(db: Session, patient_id: str) -> int:
    return db.query(func.count(models.Appointment.id)).filter(models.Appointment.patient_id == patient_id).scalar()


def doctor_has_patient(db: Session, doctor_id: str, patient_id: str) -> bool:
    return db.query(models.Appointment.id).filter(
        models.Appointment.doctor_id == doctor_id,
        models.Appointment.patient_id == patient_id,
    ).first() is not None


# ==================== APPOINTMENTS ====================

def get_appointment(db: Session, appointment_id: str) -> Optional[models.Appointment]:
    return db.get(models.Appointment, appointment_id)


def get_appointments(
    db: Session,
    clinic_id: str,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    status: Optional[models.AppointmentStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Appointment]:
    query = db.query(models.Appointment).filter(models.Appointment.clinic_id == clinic_id)
    if doctor_id:
        query = query.filter(models.Appointment.doctor_id == doctor_id)
    if patient_id:
        query = query.filter(models.Appointment.patient_id == patient_id)
    if status:
        query = query.filter(models.Appointment.status == status)
    if start_date:
        query = query.filter(models.Appointment.start >= start_date)
    if end_date:
        query = query.filter(models.Appointment.start <= end_date)
    return _page(query.order_by(models.Appointment.start), skip, limit).all()


def find_overlapping_appointments(
    db: Session,
    doctor_id: str,
    start: datetime,
    end: datetime,
    exclude_id: Optional[str] = None,
) -> List[models.Appointment]:
    """Appointments of `doctor_id` whose [start, end) intersects the given interval.

    Cancelled and no-show appointments never block a booking. Touching
    intervals (one ends exactly when the other starts) do not overlap.
    """
    query = db.query(models.Appointment).filter(
        models.Appointment.doctor_id == doctor_id,
        models.Appointment.status.notin_(ACTIVE_APPOINTMENT_EXCLUDED),
        models.Appointment.start < end,
        models.Appointment.end > start,
    )
    if exclude_id:
        query = query.filter(models.Appointment.id != exclude_id)
    return query.all()


def create_appointment(db: Session, **fields) -> models.Appointment:
    return save(db, models.Appointment(**fields))


# ==================== WEEKLY SLOTS ====================

def get_weekly_slot(db: Session, slot_id: str) -> Optional[models.WeeklySlot]:
    return db.get(models.WeeklySlot, slot_id)


def get_weekly_slots(
    db: Session,
    clinic_id: str,
    doctor_id: Optional[str] = None,
    weekday: Optional[int] = None,
    active: Optional[bool] = None,
) -> List[models.WeeklySlot]:
    query = db.query(models.WeeklySlot).join(models.Doctor).filter(models.Doctor.clinic_id == clinic_id)
    if doctor_id:
        query = query.filter(models.WeeklySlot.doctor_id == doctor_id)
    if weekday is not None:
        query = query.filter(models.WeeklySlot.weekday == weekday)
    if active is not None:
        query = query.filter(models.WeeklySlot.active == active)
    return query.order_by(models.WeeklySlot.weekday, models.WeeklySlot.start_time).all()


def find_exact_slot(
    db: Session, doctor_id: str, weekday: int, start_time: str, end_time: str, exclude_id: Optional[str] = None
) -> Optional[models.WeeklySlot]:
    query = db.query(models.WeeklySlot).filter(
        models.WeeklySlot.doctor_id == doctor_id,
        models.WeeklySlot.weekday == weekday,
        models.WeeklySlot.start_time == start_time,
        models.WeeklySlot.end_time == end_time,
    )
    if exclude_id:
        query = query.filter(models.WeeklySlot.id != exclude_id)
    return query.first()


def get_active_slots_for_day(
    db: Session, doctor_id: str, weekday: int, exclude_id: Optional[str] = None
) -> List[models.WeeklySlot]:
    query = db.query(models.WeeklySlot).filter(
        models.WeeklySlot.doctor_id == doctor_id,
        models.WeeklySlot.weekday == weekday,
        models.WeeklySlot.active.is_(True),
    )
    if exclude_id:
        query = query.filter(models.WeeklySlot.id != exclude_id)
    return query.all()


# ==================== REMINDER RULES ====================

def get_reminder_rule(db: Session, rule_id: str) -> Optional[models.ReminderRule]:
    return db.get(models.ReminderRule, rule_id)


def get_reminder_rules(db: Session, clinic_id: str, active: Optional[bool] = None) -> List[models.ReminderRule]:
    """Rules ordered farthest-out first, then by channel."""
    query = db.query(models.ReminderRule).filter(models.ReminderRule.clinic_id == clinic_id)
    if active is not None:
        query = query.filter(models.ReminderRule.active == active)
    return query.order_by(models.ReminderRule.offset_min.desc(), models.ReminderRule.channel.asc()).all()


def get_reminder_rule_by_key(
    db: Session, clinic_id: str, offset_min: int, channel: models.ReminderChannel, exclude_id: Optional[str] = None
) -> Optional[models.ReminderRule]:
    query = db.query(models.ReminderRule).filter(
        models.ReminderRule.clinic_id == clinic_id,
        models.ReminderRule.offset_min == offset_min,
        models.ReminderRule.channel == channel,
    )
    if exclude_id:
        query = query.filter(models.ReminderRule.id != exclude_id)
    return query.first()


# ==================== REMINDERS ====================

def get_reminder(db: Session, reminder_id: str) -> Optional[models.Reminder]:
    return db.get(models.Reminder, reminder_id)


def get_reminders(
    db: Session,
    clinic_id: str,
    appointment_id: Optional[str] = None,
    status: Optional[models.ReminderStatus] = None,
    channel: Optional[models.ReminderChannel] = None,
    scheduled_after: Optional[datetime] = None,
    scheduled_before: Optional[datetime] = None,
    doctor_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Reminder]:
    query = db.query(models.Reminder).join(models.Appointment).filter(models.Appointment.clinic_id == clinic_id)
    if appointment_id:
        query = query.filter(models.Reminder.appointment_id == appointment_id)
    if status:
        query = query.filter(models.Reminder.status == status)
    if channel:
        query = query.filter(models.Reminder.channel == channel)
    if scheduled_after:
        query = query.filter(models.Reminder.scheduled_for >= scheduled_after)
    if scheduled_before:
        query = query.filter(models.Reminder.scheduled_for <= scheduled_before)
    if doctor_id:
        query = query.filter(models.Appointment.doctor_id == doctor_id)
    return _page(query.order_by(models.Reminder.scheduled_for), skip, limit).all()


def reminder_exists(db: Session, appointment_id: str, rule_id: str) -> bool:
    return db.query(models.Reminder.id).filter(
        models.Reminder.appointment_id == appointment_id,
        models.Reminder.rule_id == rule_id,
    ).first() is not None


def get_due_reminders(db: Session, before: datetime, clinic_id: Optional[str] = None, limit: int = 100) -> List[models.Reminder]:
    query = db.query(models.Reminder).filter(
        models.Reminder.status == models.ReminderStatus.SCHEDULED,
        models.Reminder.scheduled_for <= before,
    )
    if clinic_id:
        query = query.join(models.Appointment).filter(models.Appointment.clinic_id == clinic_id)
    return query.order_by(models.Reminder.scheduled_for).limit(limit).all()


def get_scheduled_reminders(db: Session, appointment_id: str) -> List[models.Reminder]:
    return db.query(models.Reminder).filter(
        models.Reminder.appointment_id == appointment_id,
        models.Reminder.status == models.ReminderStatus.SCHEDULED,
    ).all()


# ==================== WEBHOOK ENDPOINTS ====================

def get_webhook_endpoint(db: Session, endpoint_id: str) -> Optional[models.WebhookEndpoint]:
    return db.get(models.WebhookEndpoint, endpoint_id)


def get_webhook_endpoints(
    db: Session, clinic_id: str, active: Optional[bool] = None, event: Optional[str] = None
) -> List[models.WebhookEndpoint]:
    query = db.query(models.WebhookEndpoint).filter(models.WebhookEndpoint.clinic_id == clinic_id)
    if active is not None:
        query = query.filter(models.WebhookEndpoint.active == active)
    endpoints = query.order_by(models.WebhookEndpoint.created_at.desc()).all()
    # JSON containment differs per dialect, the event filter runs in Python
    if event:
        endpoints = [e for e in endpoints if event in (e.events or [])]
    return endpoints


def get_webhook_endpoint_by_url(
    db: Session, clinic_id: str, url: str, exclude_id: Optional[str] = None
) -> Optional[models.WebhookEndpoint]:
    query = db.query(models.WebhookEndpoint).filter(
        models.WebhookEndpoint.clinic_id == clinic_id,
        models.WebhookEndpoint.url == url,
    )
    if exclude_id:
        query = query.filter(models.WebhookEndpoint.id != exclude_id)
    return query.first()


def record_webhook_success(db: Session, endpoint: models.WebhookEndpoint, at: datetime) -> models.WebhookEndpoint:
    return update(db, endpoint, {"failure_count": 0, "last_success_at": at})


def record_webhook_failure(db: Session, endpoint: models.WebhookEndpoint, at: datetime) -> models.WebhookEndpoint:
    # Atomic SQL-side increment
    db.query(models.WebhookEndpoint).filter(models.WebhookEndpoint.id == endpoint.id).update(
        {
            models.WebhookEndpoint.failure_count: models.WebhookEndpoint.failure_count + 1,
            models.WebhookEndpoint.last_failure_at: at,
        },
        synchronize_session=False,
    )
    return commit(db, endpoint)


# ==================== AUDIT LOGS ====================

def get_audit_log(db: Session, audit_log_id: str) -> Optional[models.AuditLog]:
    return db.get(models.AuditLog, audit_log_id)


def _audit_query(
    db: Session,
    clinic_id: str,
    actor_id: Optional[str] = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    appointment_id: Optional[str] = None,
) -> Query:
    query = db.query(models.AuditLog).filter(models.AuditLog.clinic_id == clinic_id)
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    if entity:
        query = query.filter(models.AuditLog.entity == entity)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if entity_id:
        query = query.filter(models.AuditLog.entity_id == entity_id)
    if start_date:
        query = query.filter(models.AuditLog.created_at >= start_date)
    if end_date:
        query = query.filter(models.AuditLog.created_at <= end_date)
    if appointment_id:
        query = query.filter(models.AuditLog.appointment_id == appointment_id)
    return query


def get_audit_logs(db: Session, clinic_id: str, skip: int = 0, limit: int = 50, **filters) -> List[models.AuditLog]:
    """Retrieve audit logs with filtering, newest first."""
    try:
        query = _audit_query(db, clinic_id, **filters).order_by(models.AuditLog.created_at.desc())
        return _page(query, skip, limit).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching audit logs: {e}")
        raise CRUDError("A database error occurred while fetching audit logs.")


def count_audit_logs(db: Session, clinic_id: str, **filters) -> int:
    return _audit_query(db, clinic_id, **filters).count()


def delete_audit_logs(db: Session, clinic_id: str, **filters) -> int:
    deleted = _audit_query(db, clinic_id, **filters).delete(synchronize_session=False)
    commit(db)
    return deleted


def delete_audit_logs_before(db: Session, clinic_id: str, cutoff: datetime) -> int:
    deleted = db.query(models.AuditLog).filter(
        models.AuditLog.clinic_id == clinic_id,
        models.AuditLog.created_at < cutoff,
    ).delete(synchronize_session=False)
    commit(db)
    return deleted


def audit_counts_by(
    db: Session, clinic_id: str, column, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
) -> List[Tuple[Any, int]]:
    """(value, count) pairs for one AuditLog column, most frequent first."""
    counted = func.count(models.AuditLog.id)
    query = _audit_query(db, clinic_id, start_date=start_date, end_date=end_date)
    return query.with_entities(column, counted).group_by(column).order_by(counted.desc()).all()


def get_users_by_ids(db: Session, user_ids: Iterable[str]) -> Dict[str, models.User]:
    ids = [uid for uid in user_ids if uid]
    if not ids:
        return {}
    return {u.id: u for u in db.query(models.User).filter(models.User.id.in_(ids)).all()}
