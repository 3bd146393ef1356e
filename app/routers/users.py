# app/routers/users.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.context import RequestContext
from app.models import Role
from app.permissions import Permission
from app.security import get_request_context, require_access
from app.services import user_service

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    responses={404: {"description": "Not found"}},
)


def admin_with(permission: Permission):
    return Depends(require_access(Role.CLINIC_ADMIN, permission=permission))


@router.get("", response_model=List[schemas.UserResponse], dependencies=[admin_with(Permission.USER_READ)])
def list_users(
    role: Optional[Role] = None,
    active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_request_context),
):
    return user_service.list_users(ctx, role=role, active=active, skip=skip, limit=limit)


@router.get("/{user_id}", response_model=schemas.UserResponse, dependencies=[admin_with(Permission.USER_READ)])
def get_user(user_id: str, ctx: RequestContext = Depends(get_request_context)):
    return user_service.get_user(ctx, user_id)


@router.post(
    "",
    response_model=schemas.UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[admin_with(Permission.USER_CREATE)],
)
def create_user(data: schemas.UserCreate, ctx: RequestContext = Depends(get_request_context)):
    return user_service.create_user(ctx, data)


@router.patch("/{user_id}", response_model=schemas.UserResponse, dependencies=[admin_with(Permission.USER_UPDATE)])
def update_user(user_id: str, data: schemas.UserUpdate, ctx: RequestContext = Depends(get_request_context)):
    return user_service.update_user(ctx, user_id, data)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[admin_with(Permission.USER_DELETE)])
def delete_user(user_id: str, ctx: RequestContext = Depends(get_request_context)):
    user_service.delete_user(ctx, user_id)
