# app/models.py
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text,
    Enum as SQLAlchemyEnum, Boolean, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Stores naive UTC and always hands back timezone-aware UTC datetimes."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Enum classes
class Role(str, enum.Enum):
    CLINIC_ADMIN = "CLINIC_ADMIN"
    DOCTOR = "DOCTOR"
    ASSISTANT = "ASSISTANT"
    PATIENT = "PATIENT"


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    NOSHOW = "NOSHOW"
    COMPLETED = "COMPLETED"


class AppointmentSource(str, enum.Enum):
    ADMIN_PORTAL = "ADMIN_PORTAL"
    PATIENT_PORTAL = "PATIENT_PORTAL"
    API = "API"
    GOOGLE_CALENDAR = "GOOGLE_CALENDAR"


class ReminderChannel(str, enum.Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"


class ReminderStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


reminder_channel_type = SQLAlchemyEnum(ReminderChannel, name="reminder_channel")


class TimestampMixin:
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Clinic(TimestampMixin, Base):
    """Tenant root. Every other row hangs off a clinic."""
    __tablename__ = "clinics"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    legal_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    website = Column(String(255), nullable=True)
    logo_url = Column(String(500), nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    subscription_plan = Column(String(50), nullable=True)
    subscription_status = Column(String(50), nullable=True)
    subscription_until = Column(UTCDateTime, nullable=True)

    users = relationship("User", back_populates="clinic")


class User(TimestampMixin, Base):
    """Login identity. Email is unique per clinic only."""
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint('clinic_id', 'email', name='uq_users_clinic_email'),
        Index('idx_users_email', 'email'),
        Index('idx_users_clinic_role', 'clinic_id', 'role'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    email = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLAlchemyEnum(Role, name='user_role'), nullable=False, default=Role.PATIENT)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(30), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(UTCDateTime, nullable=True)

    clinic = relationship("Clinic", back_populates="users")
    doctor = relationship("Doctor", back_populates="user", uselist=False)
    assistant = relationship("Assistant", back_populates="user", uselist=False)
    patient = relationship("Patient", back_populates="user", uselist=False)


class Doctor(TimestampMixin, Base):
    __tablename__ = "doctors"
    __table_args__ = (
        Index('idx_doctors_clinic', 'clinic_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    title = Column(String(50), nullable=True)
    specialty = Column(String(100), nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    languages = Column(JSON, nullable=False, default=list)
    timezone = Column(String(64), nullable=True)
    is_accepting_new_patients = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")
    slots = relationship("WeeklySlot", back_populates="doctor", cascade="all, delete-orphan")


class Assistant(TimestampMixin, Base):
    __tablename__ = "assistants"
    __table_args__ = (
        Index('idx_assistants_clinic', 'clinic_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    title = Column(String(100), nullable=True)
    permissions = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="assistant")


class Patient(TimestampMixin, Base):
    __tablename__ = "patients"
    __table_args__ = (
        Index('idx_patients_clinic_email', 'clinic_id', 'email'),
        Index('idx_patients_clinic_name', 'clinic_id', 'last_name', 'first_name'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    dob = Column(UTCDateTime, nullable=True)
    gender = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    user = relationship("User", back_populates="patient")
    appointments = relationship("Appointment", back_populates="patient")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Appointment(TimestampMixin, Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_doctor_range', 'doctor_id', 'start', 'end'),
        Index('idx_appointments_patient_start', 'patient_id', 'start'),
        Index('idx_appointments_clinic_status', 'clinic_id', 'status'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    start = Column(UTCDateTime, nullable=False)
    end = Column(UTCDateTime, nullable=False)
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'),
                    nullable=False, default=AppointmentStatus.PENDING)
    source = Column(SQLAlchemyEnum(AppointmentSource, name='appointment_source'),
                    nullable=False, default=AppointmentSource.ADMIN_PORTAL)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)

    doctor = relationship("Doctor", back_populates="appointments")
    patient = relationship("Patient", back_populates="appointments")
    created_by = relationship("User")
    reminders = relationship("Reminder", back_populates="appointment", cascade="all, delete-orphan")


class WeeklySlot(TimestampMixin, Base):
    """Recurring availability window; times are zero padded HH:MM strings."""
    __tablename__ = "weekly_slots"
    __table_args__ = (
        Index('idx_weekly_slots_doctor_day', 'doctor_id', 'weekday', 'active'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    doctor_id = Column(String(36), ForeignKey("doctors.id"), nullable=False)
    weekday = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    duration_min = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    doctor = relationship("Doctor", back_populates="slots")


class ReminderRule(TimestampMixin, Base):
    __tablename__ = "reminder_rules"
    __table_args__ = (
        UniqueConstraint('clinic_id', 'offset_min', 'channel', name='uq_reminder_rules_offset_channel'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    offset_min = Column(Integer, nullable=False)
    channel = Column(reminder_channel_type, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    template = Column(Text, nullable=True)

    reminders = relationship("Reminder", back_populates="rule")


class Reminder(TimestampMixin, Base):
    __tablename__ = "reminders"
    __table_args__ = (
        Index('idx_reminders_status_scheduled', 'status', 'scheduled_for'),
        Index('idx_reminders_appointment_rule', 'appointment_id', 'rule_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False)
    rule_id = Column(String(36), ForeignKey("reminder_rules.id", ondelete="SET NULL"), nullable=True)
    channel = Column(reminder_channel_type, nullable=False)
    scheduled_for = Column(UTCDateTime, nullable=False)
    status = Column(SQLAlchemyEnum(ReminderStatus, name='reminder_status'),
                    nullable=False, default=ReminderStatus.SCHEDULED)
    sent_at = Column(UTCDateTime, nullable=True)
    error = Column(Text, nullable=True)

    appointment = relationship("Appointment", back_populates="reminders")
    rule = relationship("ReminderRule", back_populates="reminders")


class WebhookEndpoint(TimestampMixin, Base):
    __tablename__ = "webhook_endpoints"
    __table_args__ = (
        UniqueConstraint('clinic_id', 'url', name='uq_webhook_endpoints_clinic_url'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    url = Column(String(2048), nullable=False)
    secret = Column(String(255), nullable=False)
    events = Column(JSON, nullable=False, default=list)
    description = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_success_at = Column(UTCDateTime, nullable=True)
    last_failure_at = Column(UTCDateTime, nullable=True)


class AuditLog(Base):
    """Append-only action record. Rows are never updated."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('idx_audit_clinic_date', 'clinic_id', 'created_at'),
        Index('idx_audit_entity', 'entity', 'entity_id'),
        Index('idx_audit_actor_date', 'actor_id', 'created_at'),
        Index('idx_audit_appointment', 'appointment_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False)
    actor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)
    entity = Column(String(100), nullable=False)
    entity_id = Column(String(255), nullable=False)
    appointment_id = Column(String(36), ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    actor = relationship("User")
