# app/context.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .compliance_logger import AuditSink
from .models import Role, utcnow
from .permissions import AuthUser

if TYPE_CHECKING:
    from .services.webhook_service import WebhookDispatcher


@dataclass
class RequestContext:
    """Everything a service call needs, passed explicitly."""
    db: Session
    user: AuthUser
    audit: AuditSink
    webhooks: "WebhookDispatcher"
    now: Callable[[], datetime] = field(default=utcnow)

    @property
    def clinic_id(self) -> str:
        return self.user.clinic_id

    @property
    def role(self) -> Role:
        return self.user.role

    def current_doctor(self) -> Optional[models.Doctor]:
        if self.user.role != Role.DOCTOR:
            return None
        return crud.get_doctor_by_user_id(self.db, self.user.id)

    def current_patient(self) -> Optional[models.Patient]:
        if self.user.role != Role.PATIENT:
            return None
        return crud.get_patient_by_user_id(self.db, self.user.id)

    def current_assistant(self) -> Optional[models.Assistant]:
        if self.user.role != Role.ASSISTANT:
            return None
        return crud.get_assistant_by_user_id(self.db, self.user.id)
