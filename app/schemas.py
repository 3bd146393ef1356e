# app/schemas.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator

from .models import (
    AppointmentSource, AppointmentStatus, ReminderChannel, ReminderStatus, Role
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes from clients are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseSchema(BaseModel):
    class Config:
        from_attributes = True


class UTCInput(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, v):
        return as_utc(v) if isinstance(v, datetime) else v


# --- Auth ---
class RegisterRequest(UTCInput):
    clinic_id: str
    email: EmailStr
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    clinic_id: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class MessageResponse(BaseModel):
    message: str


# --- Clinics ---
class ClinicResponse(BaseSchema):
    id: str
    name: str
    legal_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    timezone: str
    subscription_plan: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_until: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ClinicUpdate(BaseModel):
    name: Optional[str] = None
    legal_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    logo_url: Optional[str] = None
    timezone: Optional[str] = None


class SubscriptionUpdate(UTCInput):
    subscription_plan: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_until: Optional[datetime] = None


# --- Users ---
class UserResponse(BaseSchema):
    id: str
    clinic_id: str
    email: str
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    active: bool
    email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    role: Optional[Role] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    active: Optional[bool] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# --- Doctors ---
class DoctorBase(BaseModel):
    title: Optional[str] = None
    specialty: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    timezone: Optional[str] = None
    is_accepting_new_patients: bool = True


class DoctorCreate(DoctorBase):
    user_id: str


class DoctorUpdate(BaseModel):
    title: Optional[str] = None
    specialty: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    languages: Optional[List[str]] = None
    timezone: Optional[str] = None
    is_accepting_new_patients: Optional[bool] = None


class DoctorResponse(DoctorBase, BaseSchema):
    id: str
    clinic_id: str
    user_id: str
    created_at: datetime


# --- Assistants ---
class AssistantCreate(BaseModel):
    user_id: str
    title: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


class AssistantUpdate(BaseModel):
    title: Optional[str] = None
    permissions: Optional[List[str]] = None
    active: Optional[bool] = None


class AssistantResponse(BaseSchema):
    id: str
    clinic_id: str
    user_id: str
    title: Optional[str] = None
    permissions: List[str]
    active: bool
    created_at: datetime


# --- Patients ---
class PatientBase(UTCInput):
    first_name: str
    last_name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    dob: Optional[datetime] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None


class PatientCreate(PatientBase):
    user_id: Optional[str] = None


class PatientUpdate(UTCInput):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    dob: Optional[datetime] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None


class PatientResponse(BaseSchema):
    id: str
    clinic_id: str
    user_id: Optional[str] = None
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    dob: Optional[datetime] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


# --- Appointments ---
class AppointmentCreate(UTCInput):
    doctor_id: str
    patient_id: str
    start: datetime
    end: datetime
    status: Optional[AppointmentStatus] = None
    source: AppointmentSource = AppointmentSource.ADMIN_PORTAL
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentUpdate(UTCInput):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    source: Optional[AppointmentSource] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentCancel(BaseModel):
    reason: Optional[str] = None


class AppointmentResponse(BaseSchema):
    id: str
    clinic_id: str
    doctor_id: str
    patient_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus
    source: AppointmentSource
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# --- Weekly slots ---
class WeeklySlotData(BaseModel):
    weekday: int
    start_time: str
    end_time: str
    duration_min: Optional[int] = None
    active: bool = True


class WeeklySlotCreate(WeeklySlotData):
    doctor_id: str


class WeeklySlotBulkCreate(BaseModel):
    doctor_id: str
    slots: List[WeeklySlotData]


class WeeklySlotUpdate(BaseModel):
    weekday: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_min: Optional[int] = None
    active: Optional[bool] = None


class WeeklySlotResponse(BaseSchema):
    id: str
    doctor_id: str
    weekday: int
    start_time: str
    end_time: str
    duration_min: Optional[int] = None
    active: bool
    created_at: datetime


class WeeklySlotBulkResult(BaseModel):
    requested: int
    created: List[WeeklySlotResponse]
    errors: List[str]


# --- Reminder rules & reminders ---
class ReminderRuleCreate(BaseModel):
    offset_min: int
    channel: ReminderChannel
    active: bool = True
    template: Optional[str] = None


class ReminderRuleUpdate(BaseModel):
    offset_min: Optional[int] = None
    channel: Optional[ReminderChannel] = None
    active: Optional[bool] = None
    template: Optional[str] = None


class ReminderRuleResponse(BaseSchema):
    id: str
    clinic_id: str
    offset_min: int
    channel: ReminderChannel
    active: bool
    template: Optional[str] = None
    created_at: datetime


class ReminderResponse(BaseSchema):
    id: str
    appointment_id: str
    rule_id: Optional[str] = None
    channel: ReminderChannel
    scheduled_for: datetime
    status: ReminderStatus
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime


class ReminderFailure(BaseModel):
    error: str


class ReminderDispatchResult(BaseModel):
    sent: int
    failed: int


# --- Webhooks ---
class WebhookEndpointCreate(BaseModel):
    url: str
    secret: str
    events: List[str]
    description: Optional[str] = None
    active: bool = True


class WebhookEndpointUpdate(BaseModel):
    url: Optional[str] = None
    secret: Optional[str] = None
    events: Optional[List[str]] = None
    description: Optional[str] = None
    active: Optional[bool] = None


class WebhookEndpointResponse(BaseSchema):
    id: str
    clinic_id: str
    url: str
    events: List[str]
    description: Optional[str] = None
    active: bool
    failure_count: int
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    created_at: datetime


class WebhookTestResult(BaseModel):
    success: bool
    status_code: int


# --- Audit logs ---
class AuditLogResponse(BaseSchema):
    id: str
    clinic_id: str
    actor_id: Optional[str] = None
    action: str
    entity: str
    entity_id: str
    appointment_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("details", "metadata"))
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditLogCreate(BaseModel):
    action: str
    entity: str
    entity_id: str
    metadata: Optional[Dict[str, Any]] = None
    appointment_id: Optional[str] = None


class CountResponse(BaseModel):
    count: int


class DeletedCount(BaseModel):
    deleted_count: int


class StatEntry(BaseModel):
    key: Optional[str] = None
    count: int


class ActorStatEntry(BaseModel):
    actor_id: Optional[str] = None
    email: Optional[str] = None
    count: int


class AuditStatistics(BaseModel):
    total: int
    by_action: List[StatEntry]
    by_entity: List[StatEntry]
    by_actor: List[ActorStatEntry]
