# app/services/profile_service.py
"""Doctor, assistant and patient profiles.

Each profile hangs off a clinic and, for doctors and assistants, off exactly
one user of the matching role.
"""
from typing import List, Optional

import structlog

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, Conflict, Forbidden, NotFound
from ..models import Role
from ..permissions import enforce, ensure_found
from . import webhook_service

logger = structlog.get_logger(__name__)


def _profile_user(ctx: RequestContext, user_id: str, role: Role) -> models.User:
    """The same-clinic user a new profile will be attached to."""
    user = ensure_found(ctx.user, crud.get_user(ctx.db, user_id), "User")
    if user.role != role:
        raise BadRequest(f"User must have {role.value} role")
    return user


# ==================== Doctors ====================

def list_doctors(ctx: RequestContext, skip: int = 0, limit: int = 100) -> List[models.Doctor]:
    return crud.get_doctors(ctx.db, ctx.clinic_id, skip=skip, limit=limit)


def _own_doctor_check(ctx: RequestContext, doctor: models.Doctor) -> None:
    if ctx.role == Role.DOCTOR:
        enforce(ctx.user, owner_roles=(Role.DOCTOR,), is_owner=doctor.user_id == ctx.user.id)


def get_doctor(ctx: RequestContext, doctor_id: str) -> models.Doctor:
    doctor = ensure_found(ctx.user, crud.get_doctor(ctx.db, doctor_id), "Doctor")
    _own_doctor_check(ctx, doctor)
    return doctor


def my_doctor_profile(ctx: RequestContext) -> models.Doctor:
    doctor = ctx.current_doctor()
    if doctor is None:
        raise NotFound("Doctor profile not found for current user")
    return doctor


def create_doctor(ctx: RequestContext, data: schemas.DoctorCreate) -> models.Doctor:
    user = _profile_user(ctx, data.user_id, Role.DOCTOR)
    if crud.get_doctor_by_user_id(ctx.db, user.id):
        raise Conflict("Doctor profile already exists for this user")

    doctor = crud.create_doctor(ctx.db, clinic_id=ctx.clinic_id, **data.model_dump())
    ctx.audit.log("doctor.create", "Doctor", doctor.id, {"userId": user.id, "specialty": doctor.specialty})
    return doctor


def update_doctor(ctx: RequestContext, doctor_id: str, data: schemas.DoctorUpdate) -> models.Doctor:
    doctor = ensure_found(ctx.user, crud.get_doctor(ctx.db, doctor_id), "Doctor")
    _own_doctor_check(ctx, doctor)
    changes = data.model_dump(exclude_unset=True)
    doctor = crud.update(ctx.db, doctor, changes)
    ctx.audit.log("doctor.update", "Doctor", doctor.id, {"changes": sorted(changes)})
    return doctor


def delete_doctor(ctx: RequestContext, doctor_id: str) -> None:
    doctor = ensure_found(ctx.user, crud.get_doctor(ctx.db, doctor_id), "Doctor")
    appointments = crud.count_doctor_appointments(ctx.db, doctor.id)
    if appointments:
        raise Conflict("Cannot delete doctor with existing appointments", appointmentCount=appointments)
    user_id = doctor.user_id
    crud.delete(ctx.db, doctor)
    ctx.audit.log("doctor.delete", "Doctor", doctor_id, {"userId": user_id})


# ==================== Assistants ====================

def list_assistants(ctx: RequestContext, active: Optional[bool] = None, skip: int = 0, limit: int = 100) -> List[models.Assistant]:
    return crud.get_assistants(ctx.db, ctx.clinic_id, active=active, skip=skip, limit=limit)


def _own_assistant_check(ctx: RequestContext, assistant: models.Assistant) -> None:
    if ctx.role == Role.ASSISTANT:
        enforce(ctx.user, owner_roles=(Role.ASSISTANT,), is_owner=assistant.user_id == ctx.user.id)


def get_assistant(ctx: RequestContext, assistant_id: str) -> models.Assistant:
    assistant = ensure_found(ctx.user, crud.get_assistant(ctx.db, assistant_id), "Assistant")
    _own_assistant_check(ctx, assistant)
    return assistant


def my_assistant_profile(ctx: RequestContext) -> models.Assistant:
    assistant = ctx.current_assistant()
    if assistant is None:
        raise NotFound("Assistant profile not found for current user")
    return assistant


def create_assistant(ctx: RequestContext, data: schemas.AssistantCreate) -> models.Assistant:
    user = _profile_user(ctx, data.user_id, Role.ASSISTANT)
    if crud.get_assistant_by_user_id(ctx.db, user.id):
        raise Conflict("Assistant profile already exists for this user")

    assistant = crud.create_assistant(ctx.db, clinic_id=ctx.clinic_id, **data.model_dump())
    ctx.audit.log("assistant.create", "Assistant", assistant.id, {"userId": user.id, "title": assistant.title})
    return assistant


def update_assistant(ctx: RequestContext, assistant_id: str, data: schemas.AssistantUpdate) -> models.Assistant:
    assistant = ensure_found(ctx.user, crud.get_assistant(ctx.db, assistant_id), "Assistant")
    changes = data.model_dump(exclude_unset=True)
    if ctx.role == Role.ASSISTANT:
        _own_assistant_check(ctx, assistant)
        if "permissions" in changes or "active" in changes:
            raise Forbidden("Assistants cannot modify permissions or active status")

    assistant = crud.update(ctx.db, assistant, changes)
    ctx.audit.log("assistant.update", "Assistant", assistant.id, {"changes": sorted(changes)})
    return assistant


def delete_assistant(ctx: RequestContext, assistant_id: str) -> None:
    assistant = ensure_found(ctx.user, crud.get_assistant(ctx.db, assistant_id), "Assistant")
    created = crud.count_appointments_created_by(ctx.db, assistant.user_id)
    if created:
        raise Conflict(
            "Cannot delete assistant who has created appointments. Deactivate instead.",
            appointmentCount=created,
        )
    user_id = assistant.user_id
    crud.delete(ctx.db, assistant)
    ctx.audit.log("assistant.delete", "Assistant", assistant_id, {"userId": user_id})


def set_assistant_active(ctx: RequestContext, assistant_id: str, active: bool) -> models.Assistant:
    assistant = ensure_found(ctx.user, crud.get_assistant(ctx.db, assistant_id), "Assistant")
    if assistant.active == active:
        raise BadRequest("Assistant is already active" if active else "Assistant is already inactive")
    assistant = crud.update(ctx.db, assistant, {"active": active})
    ctx.audit.log("assistant.activate" if active else "assistant.deactivate", "Assistant", assistant.id)
    return assistant


# ==================== Patients ====================

def _patient_payload(patient: models.Patient) -> dict:
    return schemas.PatientResponse.model_validate(patient).model_dump(mode="json")


def list_patients(
    ctx: RequestContext,
    query: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Patient]:
    doctor_id = None
    if ctx.role == Role.DOCTOR:
        doctor = ctx.current_doctor()
        if doctor is None:
            raise NotFound("Doctor profile not found")
        doctor_id = doctor.id
    elif ctx.role == Role.PATIENT:
        patient = ctx.current_patient()
        return [patient] if patient else []
    return crud.search_patients(
        ctx.db, ctx.clinic_id,
        query_text=query, email=email, phone=phone, doctor_id=doctor_id, skip=skip, limit=limit,
    )


def _check_patient_access(ctx: RequestContext, patient: models.Patient) -> None:
    if ctx.role == Role.PATIENT:
        enforce(ctx.user, owner_roles=(Role.PATIENT,), is_owner=patient.user_id == ctx.user.id)
    elif ctx.role == Role.DOCTOR:
        doctor = ctx.current_doctor()
        if doctor is None or not crud.doctor_has_patient(ctx.db, doctor.id, patient.id):
            raise Forbidden("Doctors can only view patients they have appointments with")


def get_patient(ctx: RequestContext, patient_id: str) -> models.Patient:
    patient = ensure_found(ctx.user, crud.get_patient(ctx.db, patient_id), "Patient")
    _check_patient_access(ctx, patient)
    return patient


def my_patient_profile(ctx: RequestContext) -> models.Patient:
    patient = ctx.current_patient()
    if patient is None:
        raise NotFound("Patient profile not found for current user")
    return patient


async def create_patient(ctx: RequestContext, data: schemas.PatientCreate) -> models.Patient:
    if data.user_id:
        user = _profile_user(ctx, data.user_id, Role.PATIENT)
        if crud.get_patient_by_user_id(ctx.db, user.id):
            raise Conflict("Patient profile already exists for this user")
    if data.email and crud.get_patient_by_email(ctx.db, ctx.clinic_id, data.email):
        raise Conflict("Patient with this email already exists in the clinic")

    patient = crud.create_patient(ctx.db, clinic_id=ctx.clinic_id, **data.model_dump())
    logger.info("patient_created", patient_id=patient.id, clinic_id=ctx.clinic_id)
    ctx.audit.log("patient.create", "Patient", patient.id, {"name": patient.full_name})
    await webhook_service.trigger(ctx, "patient.created", _patient_payload(patient))
    return patient


async def update_patient(ctx: RequestContext, patient_id: str, data: schemas.PatientUpdate) -> models.Patient:
    patient = ensure_found(ctx.user, crud.get_patient(ctx.db, patient_id), "Patient")
    changes = data.model_dump(exclude_unset=True)
    if ctx.role == Role.PATIENT:
        enforce(ctx.user, owner_roles=(Role.PATIENT,), is_owner=patient.user_id == ctx.user.id)
        if "notes" in changes:
            raise Forbidden("Patients cannot modify internal notes")
    if changes.get("email") and crud.get_patient_by_email(ctx.db, ctx.clinic_id, changes["email"], exclude_id=patient.id):
        raise Conflict("Patient with this email already exists in the clinic")

    patient = crud.update(ctx.db, patient, changes, "Patient with this email already exists in the clinic")
    ctx.audit.log("patient.update", "Patient", patient.id, {"changes": sorted(changes)})
    await webhook_service.trigger(ctx, "patient.updated", _patient_payload(patient))
    return patient


def delete_patient(ctx: RequestContext, patient_id: str) -> None:
    patient = ensure_found(ctx.user, crud.get_patient(ctx.db, patient_id), "Patient")
    appointments = crud.count_patient_appointments(ctx.db, patient.id)
    if appointments:
        raise Conflict("Cannot delete patient with existing appointments", appointmentCount=appointments)
    name = patient.full_name
    crud.delete(ctx.db, patient)
    ctx.audit.log("patient.delete", "Patient", patient_id, {"name": name})
