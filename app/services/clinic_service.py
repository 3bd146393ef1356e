# app/services/clinic_service.py
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .. import crud, models, schemas
from ..context import RequestContext
from ..errors import BadRequest, NotFound


def get_my_clinic(ctx: RequestContext) -> models.Clinic:
    clinic = crud.get_clinic(ctx.db, ctx.clinic_id)
    if clinic is None:
        raise NotFound("Clinic not found")
    return clinic


def update_clinic(ctx: RequestContext, data: schemas.ClinicUpdate) -> models.Clinic:
    clinic = get_my_clinic(ctx)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("timezone"):
        try:
            ZoneInfo(changes["timezone"])
        except ZoneInfoNotFoundError:
            raise BadRequest(f"Unknown timezone: {changes['timezone']}")
    if "name" in changes and not (changes["name"] or "").strip():
        raise BadRequest("Clinic name cannot be empty")

    clinic = crud.update(ctx.db, clinic, changes)
    ctx.audit.log("clinic.update", "Clinic", clinic.id, {"changes": sorted(changes)})
    return clinic


def update_subscription(ctx: RequestContext, data: schemas.SubscriptionUpdate) -> models.Clinic:
    clinic = get_my_clinic(ctx)
    changes = data.model_dump(exclude_unset=True)
    clinic = crud.update(ctx.db, clinic, changes)
    ctx.audit.log("clinic.updateSubscription", "Clinic", clinic.id, {
        "plan": clinic.subscription_plan,
        "status": clinic.subscription_status,
        "until": clinic.subscription_until.isoformat() if clinic.subscription_until else None,
    })
    return clinic
