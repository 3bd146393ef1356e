# app/routers/slots.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import Permission, STAFF_ROLES
from app.security import get_request_context, require_access
from app.services import weekly_slot_service

router = APIRouter(
    prefix="/weekly-slots",
    tags=["Weekly Slots"],
    responses={404: {"description": "Not found"}},
)

can_read = require_access(*STAFF_ROLES, permission=Permission.WEEKLY_SLOT_READ)
can_create = require_access(Role.CLINIC_ADMIN, Role.DOCTOR, permission=Permission.WEEKLY_SLOT_CREATE)
can_update = require_access(Role.CLINIC_ADMIN, Role.DOCTOR, permission=Permission.WEEKLY_SLOT_UPDATE)
can_delete = require_access(Role.CLINIC_ADMIN, Role.DOCTOR, permission=Permission.WEEKLY_SLOT_DELETE)


@router.get("", response_model=List[schemas.WeeklySlotResponse], dependencies=[Depends(can_read)])
def list_slots(
    doctor_id: Optional[str] = None,
    weekday: Optional[int] = Query(None, ge=1, le=7),
    active: Optional[bool] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return weekly_slot_service.list_slots(ctx, doctor_id=doctor_id, weekday=weekday, active=active)


@router.get("/me", response_model=List[schemas.WeeklySlotResponse], dependencies=[Depends(require_access(Role.DOCTOR))])
def my_slots(ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.my_slots(ctx)


@router.get("/doctor/{doctor_id}", response_model=List[schemas.WeeklySlotResponse], dependencies=[Depends(can_read)])
def slots_by_doctor(doctor_id: str, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.slots_by_doctor(ctx, doctor_id)


@router.get("/doctor/{doctor_id}/active", response_model=List[schemas.WeeklySlotResponse], dependencies=[Depends(can_read)])
def active_slots_by_doctor(doctor_id: str, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.slots_by_doctor(ctx, doctor_id, active_only=True)


@router.get("/{slot_id}", response_model=schemas.WeeklySlotResponse, dependencies=[Depends(can_read)])
def get_slot(slot_id: str, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.get_slot(ctx, slot_id)


@router.post(
    "",
    response_model=schemas.WeeklySlotResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_create)],
)
def create_slot(data: schemas.WeeklySlotCreate, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.create_slot(ctx, data)


@router.post(
    "/bulk",
    response_model=schemas.WeeklySlotBulkResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_create)],
)
def bulk_create_slots(data: schemas.WeeklySlotBulkCreate, ctx: RequestContext = Depends(get_request_context)):
    """Partial success: compare `requested` with the created list and read `errors`."""
    return weekly_slot_service.bulk_create_slots(ctx, data)


@router.patch("/{slot_id}", response_model=schemas.WeeklySlotResponse, dependencies=[Depends(can_update)])
def update_slot(slot_id: str, data: schemas.WeeklySlotUpdate, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.update_slot(ctx, slot_id, data)


@router.post("/{slot_id}/activate", response_model=schemas.WeeklySlotResponse, dependencies=[Depends(can_update)])
def activate_slot(slot_id: str, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.set_active(ctx, slot_id, True)


@router.post("/{slot_id}/deactivate", response_model=schemas.WeeklySlotResponse, dependencies=[Depends(can_update)])
def deactivate_slot(slot_id: str, ctx: RequestContext = Depends(get_request_context)):
    return weekly_slot_service.set_active(ctx, slot_id, False)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(can_delete)])
def delete_slot(slot_id: str, ctx: RequestContext = Depends(get_request_context)):
    weekly_slot_service.delete_slot(ctx, slot_id)
