# tests/test_permissions.py
import pytest

from app.errors import Forbidden, NotFound, Unauthenticated
from app.models import Role
from app.permissions import (
    ROLE_PERMISSIONS, AuthUser, Permission, enforce, ensure_found, evaluate, has_permission,
)

ADMIN = AuthUser(id="u-admin", email="admin@example.com", role=Role.CLINIC_ADMIN, clinic_id="c1")
DOCTOR = AuthUser(id="u-doc", email="doc@example.com", role=Role.DOCTOR, clinic_id="c1")
PATIENT = AuthUser(id="u-pat", email="pat@example.com", role=Role.PATIENT, clinic_id="c1")


class Row:
    def __init__(self, clinic_id):
        self.clinic_id = clinic_id


def test_admin_holds_every_permission():
    assert ROLE_PERMISSIONS[Role.CLINIC_ADMIN] == frozenset(Permission)


def test_role_grants():
    assert has_permission(Role.DOCTOR, Permission.WEEKLY_SLOT_CREATE)
    assert not has_permission(Role.DOCTOR, Permission.APPOINTMENT_CREATE)
    assert has_permission(Role.ASSISTANT, Permission.APPOINTMENT_CREATE)
    assert not has_permission(Role.ASSISTANT, Permission.WEEKLY_SLOT_CREATE)
    assert has_permission(Role.PATIENT, Permission.APPOINTMENT_CANCEL)
    assert not has_permission(Role.PATIENT, Permission.APPOINTMENT_UPDATE)


def test_unauthenticated_comes_first():
    decision = evaluate(None, clinic_id="c2", roles=[Role.CLINIC_ADMIN])
    assert decision.code == Unauthenticated.code


def test_tenancy_is_checked_before_role():
    decision = evaluate(PATIENT, clinic_id="c2", roles=[Role.CLINIC_ADMIN])
    assert decision.code == NotFound.code
    assert decision.reason == "different clinic"


def test_role_is_checked_before_permission():
    decision = evaluate(PATIENT, roles=[Role.CLINIC_ADMIN], permission=Permission.USER_READ)
    assert decision.code == Forbidden.code
    assert decision.extensions == {"requiredRoles": ["CLINIC_ADMIN"]}


def test_missing_permission_reports_it():
    decision = evaluate(DOCTOR, roles=[Role.DOCTOR], permission=Permission.APPOINTMENT_CREATE)
    assert not decision.allowed
    assert decision.extensions == {"requiredPermission": "appointment:create"}


def test_ownership_only_applies_to_owner_roles():
    assert evaluate(DOCTOR, owner_roles=[Role.DOCTOR], is_owner=True).allowed
    assert not evaluate(DOCTOR, owner_roles=[Role.DOCTOR], is_owner=False).allowed
    assert evaluate(ADMIN, owner_roles=[Role.DOCTOR], is_owner=False).allowed


def test_enforce_raises_matching_error():
    with pytest.raises(Forbidden) as excinfo:
        enforce(PATIENT, roles=[Role.CLINIC_ADMIN])
    assert excinfo.value.extensions["requiredRoles"] == ["CLINIC_ADMIN"]
    with pytest.raises(Unauthenticated):
        enforce(None)
    assert enforce(ADMIN, roles=[Role.CLINIC_ADMIN]) is ADMIN


def test_cross_tenant_row_looks_missing():
    with pytest.raises(NotFound) as other_clinic:
        ensure_found(ADMIN, Row("c2"), "Patient")
    with pytest.raises(NotFound) as missing:
        ensure_found(ADMIN, None, "Patient")
    assert other_clinic.value.message == missing.value.message == "Patient not found"


def test_same_tenant_row_is_returned():
    row = Row("c1")
    assert ensure_found(DOCTOR, row, "Patient") is row
