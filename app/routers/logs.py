# app/routers/logs.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import Permission
from app.security import get_request_context, require_access
from app.services import audit_service

router = APIRouter(
    prefix="/audit-logs",
    tags=["Audit Logs"],
    responses={404: {"description": "Not found"}},
)

admin_read = Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.AUDIT_READ))


@router.get("", response_model=List[schemas.AuditLogResponse], dependencies=[admin_read])
def list_audit_logs(
    actor_id: Optional[str] = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    appointment_id: Optional[str] = None,
    limit: int = Query(audit_service.DEFAULT_LIMIT, ge=1),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(get_request_context),
):
    return audit_service.list_logs(
        ctx,
        actor_id=actor_id, entity=entity, action=action, entity_id=entity_id,
        start_date=schemas.as_utc(start_date), end_date=schemas.as_utc(end_date),
        appointment_id=appointment_id, limit=limit, offset=offset,
    )


@router.get("/count", response_model=schemas.CountResponse, dependencies=[admin_read])
def count_audit_logs(
    actor_id: Optional[str] = None,
    entity: Optional[str] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    count = audit_service.count_logs(
        ctx, actor_id=actor_id, entity=entity, action=action,
        start_date=schemas.as_utc(start_date), end_date=schemas.as_utc(end_date),
    )
    return schemas.CountResponse(count=count)


@router.get("/statistics", response_model=schemas.AuditStatistics, dependencies=[admin_read])
def audit_statistics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return audit_service.statistics(ctx, schemas.as_utc(start_date), schemas.as_utc(end_date))


@router.get("/entity/{entity}/{entity_id}", response_model=List[schemas.AuditLogResponse], dependencies=[admin_read])
def audit_logs_by_entity(
    entity: str, entity_id: str, limit: int = Query(audit_service.DEFAULT_LIMIT, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return audit_service.logs_by_entity(ctx, entity, entity_id, limit=limit)


@router.get("/actor/{actor_id}", response_model=List[schemas.AuditLogResponse], dependencies=[admin_read])
def audit_logs_by_actor(
    actor_id: str, limit: int = Query(audit_service.DEFAULT_LIMIT, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return audit_service.logs_by_actor(ctx, actor_id, limit=limit)


@router.get(
    "/appointment/{appointment_id}",
    response_model=List[schemas.AuditLogResponse],
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, Role.DOCTOR, Role.ASSISTANT, permission=Permission.AUDIT_READ))],
)
def audit_logs_by_appointment(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    return audit_service.logs_by_appointment(ctx, appointment_id)


@router.get("/{log_id}", response_model=schemas.AuditLogResponse, dependencies=[admin_read])
def get_audit_log(log_id: str, ctx: RequestContext = Depends(get_request_context)):
    return audit_service.get_log(ctx, log_id)


@router.post(
    "",
    response_model=schemas.AuditLogResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.AUDIT_LOG_CREATE))],
)
def create_audit_log(data: schemas.AuditLogCreate, ctx: RequestContext = Depends(get_request_context)):
    return audit_service.create_log(ctx, data)


@router.post(
    "/archive",
    response_model=schemas.DeletedCount,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.AUDIT_LOG_DELETE))],
)
def archive_audit_logs(
    days: int = Query(audit_service.DEFAULT_ARCHIVE_DAYS, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    """Delete entries older than `days` days. The archival itself is recorded."""
    return schemas.DeletedCount(deleted_count=audit_service.archive_old_logs(ctx, days))


@router.delete(
    "/entity/{entity}/{entity_id}",
    response_model=schemas.DeletedCount,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.AUDIT_LOG_DELETE))],
)
def delete_audit_logs_by_entity(entity: str, entity_id: str, ctx: RequestContext = Depends(get_request_context)):
    return schemas.DeletedCount(deleted_count=audit_service.delete_by_entity(ctx, entity, entity_id))


@router.delete(
    "/{log_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.AUDIT_LOG_DELETE))],
)
def delete_audit_log(log_id: str, ctx: RequestContext = Depends(get_request_context)):
    audit_service.delete_log(ctx, log_id)
