# app/services/user_service.py
from typing import List, Optional

import structlog

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, Conflict, Forbidden
from ..models import Role
from ..permissions import ensure_found
from ..security import MIN_PASSWORD_LENGTH, get_password_hash

logger = structlog.get_logger(__name__)

EMAIL_TAKEN = "A user with this email already exists in this clinic"


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def list_users(
    ctx: RequestContext, role: Optional[Role] = None, active: Optional[bool] = None, skip: int = 0, limit: int = 100
) -> List[models.User]:
    return crud.get_users(ctx.db, ctx.clinic_id, role=role, active=active, skip=skip, limit=limit)


def get_user(ctx: RequestContext, user_id: str) -> models.User:
    return ensure_found(ctx.user, crud.get_user(ctx.db, user_id), "User")


def create_user(ctx: RequestContext, data: schemas.UserCreate) -> models.User:
    _check_password(data.password)
    if crud.get_user_by_email_in_clinic(ctx.db, data.email, ctx.clinic_id):
        raise Conflict(EMAIL_TAKEN)

    fields = data.model_dump(exclude={"password"})
    user = crud.create_user(
        ctx.db, clinic_id=ctx.clinic_id, password_hash=get_password_hash(data.password), **fields
    )
    logger.info("user_created", user_id=user.id, role=user.role.value)
    ctx.audit.log("user.create", "User", user.id, {"email": user.email, "role": user.role.value})
    return user


def update_user(ctx: RequestContext, user_id: str, data: schemas.UserUpdate) -> models.User:
    user = get_user(ctx, user_id)
    changes = data.model_dump(exclude_unset=True)
    if user.id == ctx.user.id and "active" in changes:
        raise Forbidden("Cannot change your own active status")
    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()
        other = crud.get_user_by_email_in_clinic(ctx.db, changes["email"], ctx.clinic_id)
        if other is not None and other.id != user.id:
            raise Conflict(EMAIL_TAKEN)
    if "password" in changes:
        password = changes.pop("password")
        if password:
            _check_password(password)
            changes["password_hash"] = get_password_hash(password)

    user = crud.update(ctx.db, user, changes, EMAIL_TAKEN)
    # Never put the hash in the trail
    ctx.audit.log("user.update", "User", user.id, {"changes": sorted(k for k in changes if k != "password_hash")})
    return user


def delete_user(ctx: RequestContext, user_id: str) -> None:
    user = get_user(ctx, user_id)
    if user.id == ctx.user.id:
        raise Forbidden("Cannot delete your own account")
    if user.doctor or user.assistant or user.patient:
        raise Conflict("Cannot delete a user with a linked profile. Deactivate instead.")
    if crud.count_appointments_created_by(ctx.db, user.id):
        raise Conflict("Cannot delete a user who has created appointments. Deactivate instead.")
    email = user.email
    crud.delete(ctx.db, user)
    ctx.audit.log("user.delete", "User", user_id, {"email": email})
