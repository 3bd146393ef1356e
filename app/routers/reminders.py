# app/routers/reminders.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import ReminderChannel, ReminderStatus, Role
from app.permissions import Permission, STAFF_ROLES
from app.security import get_request_context, require_access
from app.services import reminder_service
from app.services.notification_service import NotificationSender, get_notification_sender

router = APIRouter(tags=["Reminders"], responses={404: {"description": "Not found"}})

ADMIN_ASSISTANT = (Role.CLINIC_ADMIN, Role.ASSISTANT)


# ==================== Reminder rules ====================

@router.get(
    "/reminder-rules",
    response_model=List[schemas.ReminderRuleResponse],
    dependencies=[Depends(require_access(*ADMIN_ASSISTANT, permission=Permission.REMINDER_RULE_READ))],
)
def list_rules(active: Optional[bool] = None, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.list_rules(ctx, active=active)


@router.get(
    "/reminder-rules/{rule_id}",
    response_model=schemas.ReminderRuleResponse,
    dependencies=[Depends(require_access(*ADMIN_ASSISTANT, permission=Permission.REMINDER_RULE_READ))],
)
def get_rule(rule_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.get_rule(ctx, rule_id)


@router.post(
    "/reminder-rules",
    response_model=schemas.ReminderRuleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_RULE_CREATE))],
)
def create_rule(data: schemas.ReminderRuleCreate, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.create_rule(ctx, data)


@router.patch(
    "/reminder-rules/{rule_id}",
    response_model=schemas.ReminderRuleResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_RULE_UPDATE))],
)
def update_rule(rule_id: str, data: schemas.ReminderRuleUpdate, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.update_rule(ctx, rule_id, data)


@router.post(
    "/reminder-rules/{rule_id}/activate",
    response_model=schemas.ReminderRuleResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_RULE_UPDATE))],
)
def activate_rule(rule_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.set_rule_active(ctx, rule_id, True)


@router.post(
    "/reminder-rules/{rule_id}/deactivate",
    response_model=schemas.ReminderRuleResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_RULE_UPDATE))],
)
def deactivate_rule(rule_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.set_rule_active(ctx, rule_id, False)


@router.delete(
    "/reminder-rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_RULE_DELETE))],
)
def delete_rule(rule_id: str, ctx: RequestContext = Depends(get_request_context)):
    reminder_service.delete_rule(ctx, rule_id)


# ==================== Reminders ====================

@router.get(
    "/reminders",
    response_model=List[schemas.ReminderResponse],
    dependencies=[Depends(require_access(*STAFF_ROLES, permission=Permission.REMINDER_READ))],
)
def list_reminders(
    appointment_id: Optional[str] = None,
    status_filter: Optional[ReminderStatus] = Query(None, alias="status"),
    channel: Optional[ReminderChannel] = None,
    scheduled_after: Optional[datetime] = None,
    scheduled_before: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
):
    return reminder_service.list_reminders(
        ctx,
        appointment_id=appointment_id,
        status=status_filter,
        channel=channel,
        scheduled_after=schemas.as_utc(scheduled_after),
        scheduled_before=schemas.as_utc(scheduled_before),
        skip=skip,
        limit=limit,
    )


@router.post(
    "/reminders/dispatch-due",
    response_model=schemas.ReminderDispatchResult,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_UPDATE))],
)
async def dispatch_due_reminders(
    before: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(get_request_context),
    sender: NotificationSender = Depends(get_notification_sender),
):
    """Send every scheduled reminder of this clinic that is due by `before` (default: now)."""
    return await reminder_service.dispatch_due(ctx, sender, before=schemas.as_utc(before), limit=limit)


@router.get(
    "/reminders/{reminder_id}",
    response_model=schemas.ReminderResponse,
    dependencies=[Depends(require_access(*STAFF_ROLES, permission=Permission.REMINDER_READ))],
)
def get_reminder(reminder_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.get_reminder(ctx, reminder_id)


@router.post(
    "/appointments/{appointment_id}/reminders",
    response_model=List[schemas.ReminderResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(*ADMIN_ASSISTANT, permission=Permission.REMINDER_CREATE))],
)
def generate_reminders(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.generate(ctx, appointment_id)


@router.post(
    "/reminders/{reminder_id}/cancel",
    response_model=schemas.ReminderResponse,
    dependencies=[Depends(require_access(*ADMIN_ASSISTANT, permission=Permission.REMINDER_UPDATE))],
)
def cancel_reminder(reminder_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.cancel_reminder(ctx, reminder_id)


@router.post(
    "/reminders/{reminder_id}/sent",
    response_model=schemas.ReminderResponse,
    dependencies=[Depends(require_access(*ADMIN_ASSISTANT, permission=Permission.REMINDER_UPDATE))],
)
def mark_reminder_sent(reminder_id: str, ctx: RequestContext = Depends(get_request_context)):
    return reminder_service.mark_sent(ctx, reminder_id)


@router.post(
    "/reminders/{reminder_id}/failed",
    response_model=schemas.ReminderResponse,
    dependencies=[Depends(require_access(*ADMIN_ASSISTANT, permission=Permission.REMINDER_UPDATE))],
)
def mark_reminder_failed(
    reminder_id: str, data: schemas.ReminderFailure, ctx: RequestContext = Depends(get_request_context)
):
    return reminder_service.mark_failed(ctx, reminder_id, data.error)


@router.delete(
    "/reminders/{reminder_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.REMINDER_DELETE))],
)
def delete_reminder(reminder_id: str, ctx: RequestContext = Depends(get_request_context)):
    reminder_service.delete_reminder(ctx, reminder_id)
