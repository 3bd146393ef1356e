# app/routers/clinics.py
from fastapi import APIRouter, Depends

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import ALL_ROLES, Permission
from app.security import get_request_context, require_access
from app.services import clinic_service

router = APIRouter(prefix="/clinic", tags=["Clinic"])


@router.get("", response_model=schemas.ClinicResponse, dependencies=[Depends(require_access(*ALL_ROLES))])
def get_my_clinic(ctx: RequestContext = Depends(get_request_context)):
    return clinic_service.get_my_clinic(ctx)


@router.patch(
    "",
    response_model=schemas.ClinicResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.CLINIC_UPDATE))],
)
def update_clinic(data: schemas.ClinicUpdate, ctx: RequestContext = Depends(get_request_context)):
    return clinic_service.update_clinic(ctx, data)


@router.patch(
    "/subscription",
    response_model=schemas.ClinicResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.CLINIC_SETTINGS))],
)
def update_subscription(data: schemas.SubscriptionUpdate, ctx: RequestContext = Depends(get_request_context)):
    return clinic_service.update_subscription(ctx, data)
