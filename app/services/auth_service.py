# app/services/auth_service.py
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..compliance_logger import ComplianceLogger
from ..config import get_settings
from ..context import RequestContext
from ..errors import BadRequest, Conflict, Forbidden, NotFound, Unauthenticated
from ..models import Role
from ..security import (
    MIN_PASSWORD_LENGTH,
    create_access_token,
    create_refresh_token,
    get_password_hash,
    new_token_version,
    verify_password,
    verify_token,
)
from ..session_store import TokenStore

logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


def _audit_for(db: Session, user: models.User, ip_address: Optional[str], user_agent: Optional[str]) -> ComplianceLogger:
    return ComplianceLogger(db, user.clinic_id, actor_id=user.id, ip_address=ip_address, user_agent=user_agent)


def issue_tokens(store: TokenStore, user: models.User) -> schemas.TokenResponse:
    """Create an access/refresh pair and remember the refresh token."""
    settings = get_settings()
    token_version = new_token_version()
    access_token = create_access_token(user, token_version)
    refresh_token = create_refresh_token(user, token_version)

    ttl = int(timedelta(days=settings.refresh_token_expire_days).total_seconds())
    now = datetime.now(timezone.utc)
    store.store(refresh_token, {
        "userId": user.id,
        "email": user.email,
        "role": user.role.value,
        "clinicId": user.clinic_id,
        "tokenVersion": token_version,
        "createdAt": now.isoformat(),
        "expiresAt": (now + timedelta(seconds=ttl)).isoformat(),
    }, ttl)

    return schemas.TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.access_token_expire_minutes * 60,
        user=schemas.UserResponse.model_validate(user),
    )


def register(
    db: Session,
    store: TokenStore,
    data: schemas.RegisterRequest,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> schemas.TokenResponse:
    """Self-service signup. Always creates a PATIENT account."""
    if crud.get_clinic(db, data.clinic_id) is None:
        raise NotFound("Clinic not found")
    if len(data.password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if crud.get_user_by_email_in_clinic(db, data.email, data.clinic_id):
        raise BadRequest("Email already in use")

    # Claim a front-desk patient record with the same email, or start a new one
    patient = crud.get_patient_by_email(db, data.clinic_id, data.email)
    if patient is not None and patient.user_id is not None:
        raise Conflict("A patient profile with this email is already linked to another account")

    user = crud.create_user(
        db,
        clinic_id=data.clinic_id,
        email=data.email,
        password_hash=get_password_hash(data.password),
        role=Role.PATIENT,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )

    if patient is None:
        crud.create_patient(
            db,
            clinic_id=data.clinic_id,
            user_id=user.id,
            first_name=data.first_name or "",
            last_name=data.last_name or "",
            email=user.email,
            phone=data.phone,
        )
    else:
        crud.update(db, patient, {"user_id": user.id})

    logger.info("user_registered", user_id=user.id, clinic_id=user.clinic_id)
    _audit_for(db, user, ip_address, user_agent).log("auth.register", "User", user.id, {
        "email": user.email,
        "role": user.role.value,
    })
    return issue_tokens(store, user)


def login(
    db: Session,
    store: TokenStore,
    data: schemas.LoginRequest,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> schemas.TokenResponse:
    candidates = crud.get_users_by_email(db, data.email, data.clinic_id)
    matches = [u for u in candidates if verify_password(data.password, u.password_hash)]
    if not matches:
        logger.info("login_failed", email=data.email, clinic_id=data.clinic_id)
        raise Unauthenticated(INVALID_CREDENTIALS)
    if len(matches) > 1:
        raise BadRequest(
            "This email is registered with several clinics. Please specify a clinic.",
            clinics=[{"id": u.clinic_id, "name": u.clinic.name} for u in matches],
        )

    user = matches[0]
    if not user.active:
        raise Forbidden("Account is deactivated")

    user = crud.update(db, user, {"last_login_at": datetime.now(timezone.utc)})
    _audit_for(db, user, ip_address, user_agent).log("auth.login", "User", user.id, {"email": user.email})
    return issue_tokens(store, user)


def refresh(
    db: Session,
    store: TokenStore,
    refresh_token: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> schemas.TokenResponse:
    """Rotate a refresh token: the old one is revoked, a new pair is issued."""
    payload = verify_token(refresh_token, "refresh")
    if not payload:
        raise Unauthenticated("Invalid or expired refresh token")

    stored = store.get(refresh_token)
    if not stored:
        raise Unauthenticated("Refresh token not found or expired")
    if stored.get("tokenVersion") != payload.get("tokenVersion"):
        raise Unauthenticated("Token version mismatch")

    user = crud.get_user(db, stored["userId"])
    if user is None or not user.active:
        raise Unauthenticated("User not found or inactive")

    store.delete(refresh_token)
    _audit_for(db, user, ip_address, user_agent).log("auth.refreshToken", "User", user.id, {"email": user.email})
    return issue_tokens(store, user)


def logout(ctx: RequestContext, store: TokenStore, refresh_token: str) -> None:
    stored = store.get(refresh_token)
    if stored and stored.get("userId") != ctx.user.id:
        raise Forbidden("Refresh token belongs to another user")
    store.delete(refresh_token)
    ctx.audit.log("auth.logout", "User", ctx.user.id, {"email": ctx.user.email})


def logout_all(ctx: RequestContext, store: TokenStore) -> int:
    revoked = store.delete_all_for_user(ctx.user.id)
    logger.info("refresh_tokens_revoked", user_id=ctx.user.id, count=revoked)
    ctx.audit.log("auth.logoutAll", "User", ctx.user.id, {"revokedCount": revoked})
    return revoked


def me(ctx: RequestContext) -> models.User:
    user = crud.get_user(ctx.db, ctx.user.id)
    if user is None:
        raise Unauthenticated("User not found")
    return user
