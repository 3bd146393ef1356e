# app/routers/webhooks.py
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import Permission
from app.security import get_request_context, require_access
from app.services import webhook_service

router = APIRouter(
    prefix="/webhook-endpoints",
    tags=["Webhooks"],
    responses={404: {"description": "Not found"}},
)


def admin_with(permission: Permission):
    return Depends(require_access(Role.CLINIC_ADMIN, permission=permission))


@router.get("", response_model=List[schemas.WebhookEndpointResponse], dependencies=[admin_with(Permission.WEBHOOK_READ)])
def list_endpoints(
    active: Optional[bool] = None,
    event: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return webhook_service.list_endpoints(ctx, active=active, event=event)


@router.get("/events", response_model=List[str], dependencies=[admin_with(Permission.WEBHOOK_READ)])
def list_events():
    """Event names an endpoint may subscribe to."""
    return list(webhook_service.VALID_EVENTS)


@router.get("/{endpoint_id}", response_model=schemas.WebhookEndpointResponse, dependencies=[admin_with(Permission.WEBHOOK_READ)])
def get_endpoint(endpoint_id: str, ctx: RequestContext = Depends(get_request_context)):
    return webhook_service.get_endpoint(ctx, endpoint_id)


@router.post(
    "",
    response_model=schemas.WebhookEndpointResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[admin_with(Permission.WEBHOOK_CREATE)],
)
def create_endpoint(data: schemas.WebhookEndpointCreate, ctx: RequestContext = Depends(get_request_context)):
    return webhook_service.create_endpoint(ctx, data)


@router.patch("/{endpoint_id}", response_model=schemas.WebhookEndpointResponse, dependencies=[admin_with(Permission.WEBHOOK_UPDATE)])
def update_endpoint(
    endpoint_id: str, data: schemas.WebhookEndpointUpdate, ctx: RequestContext = Depends(get_request_context)
):
    return webhook_service.update_endpoint(ctx, endpoint_id, data)


@router.post("/{endpoint_id}/activate", response_model=schemas.WebhookEndpointResponse, dependencies=[admin_with(Permission.WEBHOOK_UPDATE)])
def activate_endpoint(endpoint_id: str, ctx: RequestContext = Depends(get_request_context)):
    return webhook_service.set_active(ctx, endpoint_id, True)


@router.post("/{endpoint_id}/deactivate", response_model=schemas.WebhookEndpointResponse, dependencies=[admin_with(Permission.WEBHOOK_UPDATE)])
def deactivate_endpoint(endpoint_id: str, ctx: RequestContext = Depends(get_request_context)):
    return webhook_service.set_active(ctx, endpoint_id, False)


@router.post(
    "/{endpoint_id}/reset-failures",
    response_model=schemas.WebhookEndpointResponse,
    dependencies=[admin_with(Permission.WEBHOOK_UPDATE)],
)
def reset_failure_count(endpoint_id: str, ctx: RequestContext = Depends(get_request_context)):
    return webhook_service.reset_failure_count(ctx, endpoint_id)


@router.post("/{endpoint_id}/test", response_model=schemas.WebhookTestResult, dependencies=[admin_with(Permission.WEBHOOK_TEST)])
async def test_endpoint(endpoint_id: str, ctx: RequestContext = Depends(get_request_context)):
    return await webhook_service.test_endpoint(ctx, endpoint_id)


@router.delete("/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[admin_with(Permission.WEBHOOK_DELETE)])
def delete_endpoint(endpoint_id: str, ctx: RequestContext = Depends(get_request_context)):
    webhook_service.delete_endpoint(ctx, endpoint_id)
