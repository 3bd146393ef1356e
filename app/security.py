# app/security.py
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import crud, models
from .compliance_logger import AuditSink, ComplianceLogger
from .config import get_settings
from .context import RequestContext
from .database import get_db
from .errors import Unauthenticated
from .models import Role
from .permissions import AuthUser, Permission, enforce
from .services.webhook_service import WebhookDispatcher, get_webhook_dispatcher

security_logger = logging.getLogger("security")

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=4,
    argon2__memory_cost=65536,
    argon2__parallelism=1,
)

MIN_PASSWORD_LENGTH = 8

bearer_scheme = HTTPBearer(auto_error=False)


# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unknown hash formats are a non-match, not a crash
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


# JWT utilities
def _token_claims(user: models.User, token_version: int) -> Dict[str, Any]:
    return {
        "userId": user.id,
        "email": user.email,
        "role": user.role.value,
        "clinicId": user.clinic_id,
        "tokenVersion": token_version,
    }


def _encode(claims: Dict[str, Any], secret: str, token_type: str, lifetime: timedelta) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    to_encode = dict(claims)
    to_encode.update({
        "type": token_type,
        "iat": now,
        "exp": now + lifetime,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user: models.User, token_version: int) -> str:
    settings = get_settings()
    return _encode(
        _token_claims(user, token_version), settings.jwt_access_secret, "access",
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user: models.User, token_version: int) -> str:
    settings = get_settings()
    return _encode(
        _token_claims(user, token_version), settings.jwt_refresh_secret, "refresh",
        timedelta(days=settings.refresh_token_expire_days),
    )


def new_token_version() -> int:
    """Issue time in milliseconds."""
    return int(time.time() * 1000)


def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Decode a JWT with the secret for its type; None if invalid, expired or the wrong type."""
    settings = get_settings()
    secret = settings.jwt_access_secret if token_type == "access" else settings.jwt_refresh_secret
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


# Dependencies for FastAPI
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthUser:
    """Resolve the bearer token into the acting identity."""
    if credentials is None:
        raise Unauthenticated("Not authenticated")

    payload = verify_token(credentials.credentials, "access")
    if not payload or not payload.get("userId"):
        raise Unauthenticated("Could not validate credentials")

    user = crud.get_user(db, payload["userId"])
    if user is None or not user.active or user.clinic_id != payload.get("clinicId"):
        security_logger.info(f"Rejected token for user {payload.get('userId')}")
        raise Unauthenticated("Could not validate credentials")

    return AuthUser(id=user.id, email=user.email, role=user.role, clinic_id=user.clinic_id)


def require_access(*roles: Role, permission: Optional[Permission] = None):
    """Dependency factory: authenticated, one of `roles` (if given), holding `permission` (if given)."""
    def access_dependency(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
        return enforce(current_user, roles=roles or None, permission=permission)

    return access_dependency


def get_audit_sink(
    request: Request,
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
) -> AuditSink:
    return ComplianceLogger(
        db,
        clinic_id=current_user.clinic_id,
        actor_id=current_user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_request_context(
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(get_current_user),
    audit: AuditSink = Depends(get_audit_sink),
    webhooks: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> RequestContext:
    return RequestContext(db=db, user=current_user, audit=audit, webhooks=webhooks)
