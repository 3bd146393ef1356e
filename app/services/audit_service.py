# app/services/audit_service.py
from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, CRUDError
from ..models import Role
from ..permissions import enforce, ensure_found

logger = structlog.get_logger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 500
DEFAULT_ARCHIVE_DAYS = 365


def _clamp(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    if limit < 1:
        raise BadRequest("Limit must be at least 1")
    return min(limit, MAX_LIMIT)


# ==================== Queries ====================

def list_logs(
    ctx: RequestContext,
    actor_id: Optional[str] = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    appointment_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[models.AuditLog]:
    return crud.get_audit_logs(
        ctx.db, ctx.clinic_id,
        skip=max(offset, 0), limit=_clamp(limit),
        actor_id=actor_id, entity=entity, action=action, entity_id=entity_id,
        start_date=start_date, end_date=end_date, appointment_id=appointment_id,
    )


def get_log(ctx: RequestContext, log_id: str) -> models.AuditLog:
    return ensure_found(ctx.user, crud.get_audit_log(ctx.db, log_id), "Audit log")


def logs_by_entity(
    ctx: RequestContext, entity: str, entity_id: str, limit: Optional[int] = None
) -> List[models.AuditLog]:
    return crud.get_audit_logs(ctx.db, ctx.clinic_id, limit=_clamp(limit), entity=entity, entity_id=entity_id)


def logs_by_actor(ctx: RequestContext, actor_id: str, limit: Optional[int] = None) -> List[models.AuditLog]:
    ensure_found(ctx.user, crud.get_user(ctx.db, actor_id), "User")
    return crud.get_audit_logs(ctx.db, ctx.clinic_id, limit=_clamp(limit), actor_id=actor_id)


def logs_by_appointment(ctx: RequestContext, appointment_id: str) -> List[models.AuditLog]:
    appointment = ensure_found(ctx.user, crud.get_appointment(ctx.db, appointment_id), "Appointment")
    if ctx.role == Role.DOCTOR:
        doctor = ctx.current_doctor()
        enforce(ctx.user, owner_roles=(Role.DOCTOR,), is_owner=doctor is not None and doctor.id == appointment.doctor_id)
    return crud.get_audit_logs(ctx.db, ctx.clinic_id, limit=None, appointment_id=appointment.id)


def count_logs(
    ctx: RequestContext,
    actor_id: Optional[str] = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> int:
    return crud.count_audit_logs(
        ctx.db, ctx.clinic_id,
        actor_id=actor_id, entity=entity, action=action, start_date=start_date, end_date=end_date,
    )


def statistics(
    ctx: RequestContext, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
) -> schemas.AuditStatistics:
    """Counts grouped by action, by entity and by actor over an optional date range."""
    total = crud.count_audit_logs(ctx.db, ctx.clinic_id, start_date=start_date, end_date=end_date)
    by_action = crud.audit_counts_by(ctx.db, ctx.clinic_id, models.AuditLog.action, start_date, end_date)
    by_entity = crud.audit_counts_by(ctx.db, ctx.clinic_id, models.AuditLog.entity, start_date, end_date)
    by_actor = crud.audit_counts_by(ctx.db, ctx.clinic_id, models.AuditLog.actor_id, start_date, end_date)
    users = crud.get_users_by_ids(ctx.db, (actor_id for actor_id, _ in by_actor))

    return schemas.AuditStatistics(
        total=total,
        by_action=[schemas.StatEntry(key=key, count=count) for key, count in by_action],
        by_entity=[schemas.StatEntry(key=key, count=count) for key, count in by_entity],
        by_actor=[
            schemas.ActorStatEntry(
                actor_id=actor_id,
                email=users[actor_id].email if actor_id in users else None,
                count=count,
            )
            for actor_id, count in by_actor
        ],
    )


# ==================== Mutations ====================

def create_log(ctx: RequestContext, data: schemas.AuditLogCreate) -> models.AuditLog:
    """Manual trail entry. Unlike automatic audit writes, a failure here is reported."""
    if data.appointment_id:
        ensure_found(ctx.user, crud.get_appointment(ctx.db, data.appointment_id), "Appointment")
    entry = ctx.audit.log(data.action, data.entity, data.entity_id, data.metadata, appointment_id=data.appointment_id)
    if entry is None:
        raise CRUDError("Failed to write audit log entry")
    return entry


def delete_log(ctx: RequestContext, log_id: str) -> None:
    entry = get_log(ctx, log_id)
    details = {
        "deletedAction": entry.action,
        "deletedEntity": entry.entity,
        "deletedEntityId": entry.entity_id,
    }
    crud.delete(ctx.db, entry)
    ctx.audit.log("auditLog.delete", "AuditLog", log_id, details)


def delete_by_entity(ctx: RequestContext, entity: str, entity_id: str) -> int:
    deleted = crud.delete_audit_logs(ctx.db, ctx.clinic_id, entity=entity, entity_id=entity_id)
    ctx.audit.log("auditLog.bulkDelete", "AuditLog", f"{entity}:{entity_id}", {
        "deletedCount": deleted,
        "deletedEntity": entity,
        "deletedEntityId": entity_id,
    })
    return deleted


def archive_old_logs(ctx: RequestContext, days: int = DEFAULT_ARCHIVE_DAYS) -> int:
    """Delete this clinic's audit rows older than `days` days."""
    if days < 1:
        raise BadRequest("Days must be at least 1")
    cutoff = ctx.now() - timedelta(days=days)
    deleted = crud.delete_audit_logs_before(ctx.db, ctx.clinic_id, cutoff)
    logger.info("audit_logs_archived", clinic_id=ctx.clinic_id, deleted=deleted, cutoff=cutoff.isoformat())
    ctx.audit.log("auditLog.archive", "AuditLog", "bulk", {
        "deletedCount": deleted,
        "olderThan": cutoff.isoformat(),
        "retentionDays": days,
    })
    return deleted
