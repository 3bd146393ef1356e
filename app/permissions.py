# app/permissions.py
"""Role and permission model plus the tenancy/authorization guard.

The guard is a pure decision function: it never touches the database.
Callers load the target row, work out ownership, and hand the facts in.
Checks run in a fixed order: authentication, tenancy, role, permission,
ownership. The first failing check decides the outcome.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

import structlog

from .errors import ClinicAPIError, Forbidden, NotFound, Unauthenticated
from .models import Role

logger = structlog.get_logger(__name__)


class Permission(str, enum.Enum):
    USER_READ = "user:read"
    USER_CREATE = "user:create"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"

    CLINIC_READ = "clinic:read"
    CLINIC_UPDATE = "clinic:update"
    CLINIC_SETTINGS = "clinic:settings"

    DOCTOR_READ = "doctor:read"
    DOCTOR_CREATE = "doctor:create"
    DOCTOR_UPDATE = "doctor:update"
    DOCTOR_DELETE = "doctor:delete"

    ASSISTANT_READ = "assistant:read"
    ASSISTANT_CREATE = "assistant:create"
    ASSISTANT_UPDATE = "assistant:update"
    ASSISTANT_DELETE = "assistant:delete"

    PATIENT_READ = "patient:read"
    PATIENT_CREATE = "patient:create"
    PATIENT_UPDATE = "patient:update"
    PATIENT_DELETE = "patient:delete"

    APPOINTMENT_READ = "appointment:read"
    APPOINTMENT_CREATE = "appointment:create"
    APPOINTMENT_UPDATE = "appointment:update"
    APPOINTMENT_CANCEL = "appointment:cancel"
    APPOINTMENT_DELETE = "appointment:delete"

    WEEKLY_SLOT_READ = "weeklySlot:read"
    WEEKLY_SLOT_CREATE = "weeklySlot:create"
    WEEKLY_SLOT_UPDATE = "weeklySlot:update"
    WEEKLY_SLOT_DELETE = "weeklySlot:delete"

    REMINDER_READ = "reminder:read"
    REMINDER_CREATE = "reminder:create"
    REMINDER_UPDATE = "reminder:update"
    REMINDER_DELETE = "reminder:delete"

    REMINDER_RULE_READ = "reminderRule:read"
    REMINDER_RULE_CREATE = "reminderRule:create"
    REMINDER_RULE_UPDATE = "reminderRule:update"
    REMINDER_RULE_DELETE = "reminderRule:delete"

    WEBHOOK_READ = "webhook:read"
    WEBHOOK_CREATE = "webhook:create"
    WEBHOOK_UPDATE = "webhook:update"
    WEBHOOK_DELETE = "webhook:delete"
    WEBHOOK_TEST = "webhook:test"

    AUDIT_READ = "audit:read"
    AUDIT_LOG_CREATE = "auditLog:create"
    AUDIT_LOG_DELETE = "auditLog:delete"


P = Permission

ROLE_PERMISSIONS: Mapping[Role, FrozenSet[Permission]] = {
    Role.CLINIC_ADMIN: frozenset(Permission),
    Role.DOCTOR: frozenset({
        P.PATIENT_READ,
        P.APPOINTMENT_READ, P.APPOINTMENT_UPDATE, P.APPOINTMENT_CANCEL,
        P.DOCTOR_READ, P.DOCTOR_UPDATE,
        P.WEEKLY_SLOT_READ, P.WEEKLY_SLOT_CREATE, P.WEEKLY_SLOT_UPDATE, P.WEEKLY_SLOT_DELETE,
        P.REMINDER_READ,
        P.AUDIT_READ,
    }),
    Role.ASSISTANT: frozenset({
        P.PATIENT_READ, P.PATIENT_CREATE, P.PATIENT_UPDATE,
        P.APPOINTMENT_READ, P.APPOINTMENT_CREATE, P.APPOINTMENT_UPDATE, P.APPOINTMENT_CANCEL,
        P.DOCTOR_READ,
        P.ASSISTANT_READ, P.ASSISTANT_UPDATE,
        P.WEEKLY_SLOT_READ,
        P.REMINDER_READ, P.REMINDER_CREATE, P.REMINDER_UPDATE,
        P.REMINDER_RULE_READ,
        P.AUDIT_READ,
    }),
    Role.PATIENT: frozenset({
        P.APPOINTMENT_READ, P.APPOINTMENT_CANCEL,
        P.PATIENT_READ, P.PATIENT_UPDATE,
    }),
}

ALL_ROLES = frozenset(Role)
STAFF_ROLES = frozenset({Role.CLINIC_ADMIN, Role.DOCTOR, Role.ASSISTANT})


def permissions_for(role: Role) -> FrozenSet[Permission]:
    return ROLE_PERMISSIONS[role]


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS[role]


@dataclass(frozen=True)
class AuthUser:
    """The acting identity, as resolved from a verified access token."""
    id: str
    email: str
    role: Role
    clinic_id: str

    @property
    def permissions(self) -> FrozenSet[Permission]:
        return permissions_for(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.CLINIC_ADMIN


@dataclass(frozen=True)
class Decision:
    allowed: bool
    code: Optional[str] = None
    reason: Optional[str] = None
    extensions: Dict[str, Any] = field(default_factory=dict)

    def to_error(self, not_found_message: str = "Not found") -> ClinicAPIError:
        if self.code == Unauthenticated.code:
            return Unauthenticated(self.reason or "Not authenticated")
        if self.code == NotFound.code:
            # Same message as a missing row, the real reason only goes to the log
            return NotFound(not_found_message)
        return Forbidden(self.reason or "Forbidden", **self.extensions)


ALLOW = Decision(allowed=True)


def evaluate(
    actor: Optional[AuthUser],
    *,
    clinic_id: Optional[str] = None,
    roles: Optional[Iterable[Role]] = None,
    permission: Optional[Permission] = None,
    owner_roles: Iterable[Role] = (),
    is_owner: Optional[bool] = None,
) -> Decision:
    """Decide whether `actor` may perform an operation.

    clinic_id is the target row's clinic (None when there is no target row).
    owner_roles lists the self-scoped roles for this operation; for those
    roles `is_owner` must be True.
    """
    if actor is None:
        return Decision(False, Unauthenticated.code, "Not authenticated")

    if clinic_id is not None and clinic_id != actor.clinic_id:
        return Decision(False, NotFound.code, "different clinic")

    if roles is not None:
        allowed_roles = frozenset(roles)
        if actor.role not in allowed_roles:
            return Decision(
                False, Forbidden.code, "Insufficient role",
                {"requiredRoles": sorted(r.value for r in allowed_roles)},
            )

    if permission is not None and not has_permission(actor.role, permission):
        return Decision(
            False, Forbidden.code, f"Missing permission: {permission.value}",
            {"requiredPermission": permission.value},
        )

    if actor.role in frozenset(owner_roles) and not is_owner:
        return Decision(False, Forbidden.code, "You can only access your own records")

    return ALLOW


def enforce(actor: Optional[AuthUser], *, not_found_message: str = "Not found", **checks) -> AuthUser:
    """Like evaluate(), but raises the matching ClinicAPIError on denial."""
    decision = evaluate(actor, **checks)
    if not decision.allowed:
        logger.info(
            "access_denied",
            user_id=getattr(actor, "id", None),
            code=decision.code,
            reason=decision.reason,
        )
        raise decision.to_error(not_found_message)
    return actor


def ensure_found(actor: AuthUser, row, label: str, clinic_id: Optional[str] = None):
    """Return `row` if it exists and belongs to the actor's clinic, else NOT_FOUND."""
    message = f"{label} not found"
    if row is None:
        raise NotFound(message)
    enforce(actor, clinic_id=clinic_id or row.clinic_id, not_found_message=message)
    return row
