# app/routers/assistants.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import Permission
from app.security import get_request_context, require_access
from app.services import profile_service

router = APIRouter(
    prefix="/assistants",
    tags=["Assistants"],
    responses={404: {"description": "Not found"}},
)

admin_only = Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.ASSISTANT_UPDATE))


@router.get(
    "",
    response_model=List[schemas.AssistantResponse],
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, Role.ASSISTANT, permission=Permission.ASSISTANT_READ))],
)
def list_assistants(
    active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
):
    return profile_service.list_assistants(ctx, active=active, skip=skip, limit=limit)


@router.get("/me", response_model=schemas.AssistantResponse, dependencies=[Depends(require_access(Role.ASSISTANT))])
def my_assistant_profile(ctx: RequestContext = Depends(get_request_context)):
    return profile_service.my_assistant_profile(ctx)


@router.get(
    "/{assistant_id}",
    response_model=schemas.AssistantResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, Role.ASSISTANT, permission=Permission.ASSISTANT_READ))],
)
def get_assistant(assistant_id: str, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.get_assistant(ctx, assistant_id)


@router.post(
    "",
    response_model=schemas.AssistantResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.ASSISTANT_CREATE))],
)
def create_assistant(data: schemas.AssistantCreate, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.create_assistant(ctx, data)


@router.patch(
    "/{assistant_id}",
    response_model=schemas.AssistantResponse,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, Role.ASSISTANT, permission=Permission.ASSISTANT_UPDATE))],
)
def update_assistant(
    assistant_id: str, data: schemas.AssistantUpdate, ctx: RequestContext = Depends(get_request_context)
):
    return profile_service.update_assistant(ctx, assistant_id, data)


@router.post("/{assistant_id}/activate", response_model=schemas.AssistantResponse, dependencies=[admin_only])
def activate_assistant(assistant_id: str, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.set_assistant_active(ctx, assistant_id, True)


@router.post("/{assistant_id}/deactivate", response_model=schemas.AssistantResponse, dependencies=[admin_only])
def deactivate_assistant(assistant_id: str, ctx: RequestContext = Depends(get_request_context)):
    return profile_service.set_assistant_active(ctx, assistant_id, False)


@router.delete(
    "/{assistant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_access(Role.CLINIC_ADMIN, permission=Permission.ASSISTANT_DELETE))],
)
def delete_assistant(assistant_id: str, ctx: RequestContext = Depends(get_request_context)):
    profile_service.delete_assistant(ctx, assistant_id)
