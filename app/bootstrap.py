# Creates a tenant and its first CLINIC_ADMIN. Clinics have no public signup route.
from typing import Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from . import crud, models
from .errors import BadRequest
from .security import MIN_PASSWORD_LENGTH, get_password_hash

logger = structlog.get_logger(__name__)


def create_clinic_with_admin(
    db: Session,
    clinic_name: str,
    email: str,
    password: str,
    timezone: str = "UTC",
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> Tuple[models.Clinic, models.User]:
    if not clinic_name.strip():
        raise BadRequest("Clinic name cannot be empty")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    clinic = crud.create_clinic(db, name=clinic_name.strip(), timezone=timezone)
    admin = crud.create_user(
        db,
        clinic_id=clinic.id,
        email=email,
        password_hash=get_password_hash(password),
        role=models.Role.CLINIC_ADMIN,
        first_name=first_name,
        last_name=last_name,
        active=True,
    )
    logger.info("clinic_bootstrapped", clinic_id=clinic.id, admin_id=admin.id)
    return clinic, admin


def reset_admin_password(db: Session, clinic_id: str, email: str, password: str) -> models.User:
    """Re-activate an existing admin and set a known password."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    user = crud.get_user_by_email_in_clinic(db, email, clinic_id)
    if user is None or user.role != models.Role.CLINIC_ADMIN:
        raise BadRequest("No clinic admin with this email in the clinic")
    user = crud.update(db, user, {"password_hash": get_password_hash(password), "active": True})
    logger.info("clinic_admin_reset", clinic_id=clinic_id, admin_id=user.id)
    return user
