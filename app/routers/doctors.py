# app/routers/doctors.py
from typing import List

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import Permission, STAFF_ROLES
from app.security import get_request_context, require_access
from app.services import profile_service

router = APIRouter(
    prefix="/doctors",
    tags=["Doctors"],
    responses={404: {"description": "Not found"}},
)


@router.get(
    "",
    response_model=List[schemas.DoctorResponse],
    dependencies=[Depends(require_access(*STAFF_ROLES, permission=Permission.DOCTOR_READ))],
)
def list_doctors(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
):
    return profile_service.list_doctors(ctx, skip=skip, limit=limit)


@router.get("/me", response_model=schemas.DoctorResponse, dependencies=[Depends(require_access(Role.DOCTOR))])
def my_doctor_profile(ctx: RequestContext = Depends(get_request_context)):
    return profile_service.my_doctor_profile(ctx)


@router.get(
    "/{doctor_id}",
    response_model=schemas.DoctorResponse,
    dependencies=[Depends(require_access(*STAFF_ROLES, permission=Permission.DOCTOR_READ))],
)
def get_doctor(doctor_id: str, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.get_doctor(ctx, doctor_id)


@router.post(
    "",
    response_model=schemas.DoctorResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.DOCTOR_CREATE))],
)
def create_doctor(data: schemas.DoctorCreate, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.create_doctor(ctx, data)


@router.patch(
    "/{doctor_id}",
    response_model=schemas.DoctorResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, Role.DOCTOR, permission=Permission.DOCTOR_UPDATE))],
)
def update_doctor(doctor_id: str, data: schemas.DoctorUpdate, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.update_doctor(ctx, doctor_id, data)


@router.delete(
    "/{doctor_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.DOCTOR_DELETE))],
)
def delete_doctor(doctor_id: str, ctx: RequestContext = Depends(get_request_context)):
    profile_service.delete_doctor(ctx, doctor_id)
