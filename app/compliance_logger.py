# app/compliance_logger.py
from typing import Any, Dict, Optional, Protocol

import structlog
from sqlalchemy.orm import Session

from app import models

logger = structlog.get_logger(__name__)


class AuditSink(Protocol):
    def log(
        self,
        action: str,
        entity: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        appointment_id: Optional[str] = None,
    ) -> Optional[models.AuditLog]:
        ...


class ComplianceLogger:
    """Writes audit trail rows into the AuditLog table.

    log() never raises. Every mutating service calls it after its own
    commit, so a failed audit write can only lose the audit row, never the
    business change that triggered it.
    """

    def __init__(
        self,
        db: Session,
        clinic_id: str,
        actor_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.db = db
        self.clinic_id = clinic_id
        self.actor_id = actor_id
        self.ip_address = ip_address
        self.user_agent = user_agent

    def log(
        self,
        action: str,
        entity: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        appointment_id: Optional[str] = None,
    ) -> Optional[models.AuditLog]:
        try:
            entry = models.AuditLog(
                clinic_id=self.clinic_id,
                actor_id=self.actor_id,
                action=action,
                entity=entity,
                entity_id=str(entity_id),
                details=metadata,
                appointment_id=appointment_id,
                ip_address=self.ip_address,
                user_agent=self.user_agent,
            )
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)
            return entry
        except Exception as exc:
            try:
                self.db.rollback()
            except Exception as rollback_exc:
                logger.error("audit_rollback_failed", error=str(rollback_exc))
            logger.error(
                "audit_write_failed",
                action=action,
                entity=entity,
                entity_id=str(entity_id),
                clinic_id=self.clinic_id,
                error=str(exc),
            )
            return None


class NullAuditSink:
    """Audit sink that records nothing. Used where no trail is wanted."""

    def log(self, action, entity, entity_id, metadata=None, appointment_id=None):
        return None
