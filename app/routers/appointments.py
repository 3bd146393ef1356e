# app/routers/appointments.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import AppointmentStatus, Role
from app.permissions import ALL_ROLES, Permission
from app.security import get_request_context, require_access
from app.services import appointment_service

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)

ADMIN, DOCTOR, ASSISTANT, PATIENT = Role.CLINIC_ADMIN, Role.DOCTOR, Role.ASSISTANT, Role.PATIENT


@router.get(
    "",
    response_model=List[schemas.AppointmentResponse],
    dependencies=[Depends(require_access(*ALL_ROLES, permission=Permission.APPOINTMENT_READ))],
)
def list_appointments(
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
):
    return appointment_service.list_appointments(
        ctx, doctor_id=doctor_id, patient_id=patient_id, status=status_filter,
        start_date=schemas.as_utc(start_date), end_date=schemas.as_utc(end_date), skip=skip, limit=limit,
    )


@router.get("/me", response_model=List[schemas.AppointmentResponse], dependencies=[Depends(require_access(PATIENT))])
def my_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    ctx: RequestContext = Depends(get_request_context),
):
    """Appointments of the logged-in patient."""
    return appointment_service.my_appointments(ctx, status=status_filter)


@router.get(
    "/doctor/{doctor_id}",
    response_model=List[schemas.AppointmentResponse],
    dependencies=[Depends(require_access(ADMIN, DOCTOR, ASSISTANT))],
)
def doctor_appointments(
    doctor_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return appointment_service.doctor_appointments(
        ctx, doctor_id, start_date=schemas.as_utc(start_date), end_date=schemas.as_utc(end_date)
    )


@router.get(
    "/{appointment_id}",
    response_model=schemas.AppointmentResponse,
    dependencies=[Depends(require_access(*ALL_ROLES, permission=Permission.APPOINTMENT_READ))],
)
def get_appointment(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    return appointment_service.get_appointment(ctx, appointment_id)


@router.post(
    "",
    response_model=schemas.AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(ADMIN, ASSISTANT, permission=Permission.APPOINTMENT_CREATE))],
)
async def create_appointment(data: schemas.AppointmentCreate, ctx: RequestContext = Depends(get_request_context)):
    return await appointment_service.create_appointment(ctx, data)


@router.patch(
    "/{appointment_id}",
    response_model=schemas.AppointmentResponse,
    dependencies=[Depends(require_access(ADMIN, ASSISTANT, permission=Permission.APPOINTMENT_UPDATE))],
)
async def update_appointment(
    appointment_id: str, data: schemas.AppointmentUpdate, ctx: RequestContext = Depends(get_request_context)
):
    return await appointment_service.update_appointment(ctx, appointment_id, data)


@router.post(
    "/{appointment_id}/cancel",
    response_model=schemas.AppointmentResponse,
    dependencies=[Depends(require_access(ADMIN, ASSISTANT, PATIENT, permission=Permission.APPOINTMENT_CANCEL))],
)
async def cancel_appointment(
    appointment_id: str,
    data: Optional[schemas.AppointmentCancel] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return await appointment_service.cancel_appointment(ctx, appointment_id, reason=data.reason if data else None)


@router.post(
    "/{appointment_id}/confirm",
    response_model=schemas.AppointmentResponse,
    dependencies=[Depends(require_access(ADMIN, ASSISTANT))],
)
async def confirm_appointment(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await appointment_service.confirm_appointment(ctx, appointment_id)


@router.post(
    "/{appointment_id}/complete",
    response_model=schemas.AppointmentResponse,
    dependencies=[Depends(require_access(ADMIN, DOCTOR))],
)
async def complete_appointment(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await appointment_service.complete_appointment(ctx, appointment_id)


@router.post(
    "/{appointment_id}/no-show",
    response_model=schemas.AppointmentResponse,
    dependencies=[Depends(require_access(ADMIN, ASSISTANT, DOCTOR))],
)
async def mark_no_show(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await appointment_service.mark_no_show(ctx, appointment_id)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(ADMIN, permission=Permission.APPOINTMENT_DELETE))],
)
def delete_appointment(appointment_id: str, ctx: RequestContext = Depends(get_request_context)):
    appointment_service.delete_appointment(ctx, appointment_id)
