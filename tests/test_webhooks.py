# tests/test_webhooks.py
import json
from datetime import datetime, timezone

import httpx
import pytest

from app import crud, models, schemas
from app.database import SessionLocal
from app.errors import BadRequest, Conflict, NotFound, WebhookTestFailed
from app.models import Role
from app.services import webhook_service
from app.services.webhook_service import EVENT_HEADER, SIGNATURE_HEADER, compute_signature

FIXED_NOW = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
WEBHOOK_SECRET = "s" * 40
PRIMARY = "https://a.example.com/hook"
SECONDARY = "https://b.example.com/hook"


@pytest.fixture
def clinic(factory):
    return factory.clinic()


@pytest.fixture
def admin(factory, clinic):
    return factory.user(clinic, Role.CLINIC_ADMIN)


def endpoint_data(url=PRIMARY, secret=WEBHOOK_SECRET, events=("appointment.created",)):
    return schemas.WebhookEndpointCreate(url=url, secret=secret, events=list(events))


async def test_deliveries_are_signed_over_the_exact_body(factory, make_ctx, recorder, clinic, admin):
    factory.endpoint(clinic, url=PRIMARY)

    await webhook_service.trigger(make_ctx(admin), "appointment.created", {"id": "a1"})

    assert len(recorder.requests) == 1
    request = recorder.requests[0]
    assert request.headers[EVENT_HEADER] == "appointment.created"
    assert request.headers[SIGNATURE_HEADER] == compute_signature(WEBHOOK_SECRET, request.content)
    assert json.loads(request.content) == {
        "event": "appointment.created",
        "clinicId": clinic.id,
        "timestamp": FIXED_NOW.isoformat(),
        "data": {"id": "a1"},
    }


def test_signature_changes_with_secret_and_body():
    body = b'{"event":"appointment.created"}'
    assert compute_signature("a" * 32, body) != compute_signature("b" * 32, body)
    assert compute_signature("a" * 32, body) != compute_signature("a" * 32, body + b" ")
    assert len(compute_signature("a" * 32, body)) == 64


async def test_only_active_subscribed_endpoints_receive_events(factory, make_ctx, recorder, clinic, admin):
    factory.endpoint(clinic, url=PRIMARY, events=["appointment.created"])
    factory.endpoint(clinic, url=SECONDARY, events=["patient.created"])
    factory.endpoint(clinic, url="https://c.example.com/hook", events=["appointment.created"], active=False)
    elsewhere = factory.clinic(name="Elsewhere")
    factory.endpoint(elsewhere, url="https://d.example.com/hook", events=["appointment.created"])

    await webhook_service.trigger(make_ctx(admin), "appointment.created", {"id": "a1"})

    assert [str(r.url) for r in recorder.requests] == [PRIMARY]


async def test_one_failing_endpoint_does_not_affect_the_others(factory, make_ctx, make_recorder, clinic, admin):
    failing = factory.endpoint(clinic, url=PRIMARY)
    healthy = factory.endpoint(clinic, url=SECONDARY)
    handler = make_recorder(fail_urls={PRIMARY})

    await webhook_service.trigger(make_ctx(admin, handler=handler), "appointment.created", {"id": "a1"})

    assert len(handler.requests) == 2
    assert (failing.failure_count, failing.last_failure_at) == (1, FIXED_NOW)
    assert (healthy.failure_count, healthy.last_success_at) == (0, FIXED_NOW)


async def test_transport_errors_are_recorded_not_raised(factory, make_ctx, clinic, admin):
    endpoint = factory.endpoint(clinic, url=PRIMARY)

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    await webhook_service.trigger(make_ctx(admin, handler=unreachable), "appointment.created", {"id": "a1"})
    assert endpoint.failure_count == 1


async def test_success_resets_failure_count(factory, make_ctx, clinic, admin):
    endpoint = factory.endpoint(clinic, url=PRIMARY, failure_count=4)
    await webhook_service.trigger(make_ctx(admin), "appointment.created", {"id": "a1"})
    assert endpoint.failure_count == 0


async def test_endpoint_test_reports_success(factory, make_ctx, recorder, clinic, admin):
    endpoint = factory.endpoint(clinic, url=PRIMARY, events=["patient.created"])

    result = await webhook_service.test_endpoint(make_ctx(admin), endpoint.id)

    assert (result.success, result.status_code) == (True, 200)
    assert recorder.requests[0].headers[EVENT_HEADER] == webhook_service.TEST_EVENT
    assert endpoint.last_success_at == FIXED_NOW


async def test_endpoint_test_failure_is_surfaced(factory, make_ctx, make_recorder, db, clinic, admin):
    endpoint = factory.endpoint(clinic, url=PRIMARY)

    with pytest.raises(WebhookTestFailed) as excinfo:
        await webhook_service.test_endpoint(make_ctx(admin, handler=make_recorder(status_code=503)), endpoint.id)

    assert excinfo.value.extensions["statusCode"] == 503
    assert endpoint.failure_count == 1
    entry = db.query(models.AuditLog).filter_by(action="webhookEndpoint.test").one()
    assert entry.details["success"] is False


@pytest.mark.parametrize("fields, message", [
    ({"url": "ftp://hooks.example.com"}, "Invalid URL"),
    ({"url": "not a url"}, "Invalid URL"),
    ({"url": "http://[::1"}, "Invalid URL"),
    ({"secret": "short"}, "at least 32 characters"),
    ({"events": ["appointment.exploded"]}, "Invalid events"),
    ({"events": []}, "At least one event"),
])
def test_endpoint_validation(make_ctx, admin, fields, message):
    with pytest.raises(BadRequest, match=message):
        webhook_service.create_endpoint(make_ctx(admin), endpoint_data(**fields))


def test_invalid_events_list_the_valid_ones(make_ctx, admin):
    with pytest.raises(BadRequest) as excinfo:
        webhook_service.create_endpoint(make_ctx(admin), endpoint_data(events=["nope"]))
    assert excinfo.value.extensions["validEvents"] == list(webhook_service.VALID_EVENTS)


def test_url_is_unique_per_clinic(factory, make_ctx, admin):
    webhook_service.create_endpoint(make_ctx(admin), endpoint_data())
    with pytest.raises(Conflict):
        webhook_service.create_endpoint(make_ctx(admin), endpoint_data())

    elsewhere = factory.clinic(name="Elsewhere")
    other_admin = factory.user(elsewhere, Role.CLINIC_ADMIN)
    assert webhook_service.create_endpoint(make_ctx(other_admin), endpoint_data()).url == PRIMARY


def test_secret_is_never_audited(make_ctx, db, admin):
    ctx = make_ctx(admin)
    endpoint = webhook_service.create_endpoint(ctx, endpoint_data())
    webhook_service.update_endpoint(ctx, endpoint.id, schemas.WebhookEndpointUpdate(secret="t" * 40))

    for entry in db.query(models.AuditLog).all():
        dumped = json.dumps(entry.details)
        assert WEBHOOK_SECRET not in dumped
        assert "t" * 40 not in dumped
    update = db.query(models.AuditLog).filter_by(action="webhookEndpoint.update").one()
    assert update.details == {"changes": ["secret"]}


def test_reset_failure_count(factory, make_ctx, db, clinic, admin):
    endpoint = factory.endpoint(clinic, failure_count=7)
    assert webhook_service.reset_failure_count(make_ctx(admin), endpoint.id).failure_count == 0
    entry = db.query(models.AuditLog).filter_by(action="webhookEndpoint.resetFailureCount").one()
    assert entry.details == {"previousFailureCount": 7}


def test_endpoints_of_another_clinic_are_not_found(factory, make_ctx, clinic):
    endpoint = factory.endpoint(clinic)
    intruder = factory.user(factory.clinic(name="Elsewhere"), Role.CLINIC_ADMIN)

    with pytest.raises(NotFound, match="Webhook endpoint not found"):
        webhook_service.get_endpoint(make_ctx(intruder), endpoint.id)
    with pytest.raises(NotFound):
        webhook_service.delete_endpoint(make_ctx(intruder), endpoint.id)


def test_concurrent_failures_are_all_counted(factory, db, clinic):
    endpoint = factory.endpoint(clinic)
    other_session = SessionLocal()
    try:
        stale = other_session.get(models.WebhookEndpoint, endpoint.id)

        crud.record_webhook_failure(db, endpoint, FIXED_NOW)
        crud.record_webhook_failure(other_session, stale, FIXED_NOW)
    finally:
        other_session.close()

    db.refresh(endpoint)
    assert endpoint.failure_count == 2
    assert endpoint.last_failure_at == FIXED_NOW


def test_malformed_url_is_rejected_on_update(make_ctx, admin):
    ctx = make_ctx(admin)
    endpoint = webhook_service.create_endpoint(ctx, endpoint_data())
    with pytest.raises(BadRequest, match="Invalid URL"):
        webhook_service.update_endpoint(ctx, endpoint.id, schemas.WebhookEndpointUpdate(url="https://[::1"))
