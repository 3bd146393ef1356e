# app/routers/patients.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import ALL_ROLES, Permission
from app.security import get_request_context, require_access
from app.services import profile_service

router = APIRouter(
    prefix="/patients",
    tags=["Patients"],
    responses={404: {"description": "Not found"}},
)


@router.get(
    "",
    response_model=List[schemas.PatientResponse],
    dependencies=[Depends(require_access(*ALL_ROLES, permission=Permission.PATIENT_READ))],
)
def list_patients(
    q: Optional[str] = Query(None, description="Matches first name, last name, email or phone"),
    email: Optional[str] = None,
    phone: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
):
    return profile_service.list_patients(ctx, query=q, email=email, phone=phone, skip=skip, limit=limit)


@router.get("/me", response_model=schemas.PatientResponse, dependencies=[Depends(require_access(Role.PATIENT))])
def my_patient_profile(ctx: RequestContext = Depends(get_request_context)):
    return profile_service.my_patient_profile(ctx)


@router.get(
    "/{patient_id}",
    response_model=schemas.PatientResponse,
    dependencies=[Depends(require_access(*ALL_ROLES, permission=Permission.PATIENT_READ))],
)
def get_patient(patient_id: str, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.get_patient(ctx, patient_id)


@router.post(
    "",
    response_model=schemas.PatientResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, Role.ASSISTANT, permission=Permission.PATIENT_CREATE))],
)
async def create_patient(data: schemas.PatientCreate, ctx: RequestContext = Depends(get_request_context)):
    return await profile_service.create_patient(ctx, data)


@router.patch(
    "/{patient_id}",
    response_model=schemas.PatientResponse,
    dependencies=[Depends(require_access(
        Role.CLINIC_ADMIN, Role.ASSISTANT, Role.PATIENT, permission=Permission.PATIENT_UPDATE,
    ))],
)
async def update_patient(patient_id: str, data: schemas.PatientUpdate, ctx: RequestContext = Depends(get_request_context)):
    return await profile_service.update_patient(ctx, patient_id, data)


@router.delete(
    "/{patient_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.PATIENT_DELETE))],
)
def delete_patient(patient_id: str, ctx: RequestContext = Depends(get_request_context)):
    profile_service.delete_patient(ctx, patient_id)
