# app/services/webhook_service.py
import asyncio
import hashlib
import hmac
import json
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import structlog

from .. import crud, models, schemas
from ..config import get_settings
from ..context import RequestContext
from ..errors import BadRequest, Conflict, WebhookTestFailed
from ..permissions import ensure_found

logger = structlog.get_logger(__name__)

VALID_EVENTS = (
    "appointment.created",
    "appointment.updated",
    "appointment.confirmed",
    "appointment.cancelled",
    "appointment.completed",
    "appointment.noshow",
    "patient.created",
    "patient.updated",
    "reminder.sent",
    "reminder.failed",
)
TEST_EVENT = "test.webhook"
MIN_SECRET_LENGTH = 32

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the exact request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_body(event: str, clinic_id: str, data: Dict[str, Any], timestamp: datetime) -> bytes:
    payload = {
        "event": event,
        "clinicId": clinic_id,
        "timestamp": timestamp.isoformat(),
        "data": data,
    }
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


class WebhookDispatcher:
    """Signs and POSTs webhook payloads. Every call is bounded by `timeout`."""

    def __init__(self, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def send(self, client: httpx.AsyncClient, url: str, secret: str, event: str, body: bytes) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: compute_signature(secret, body),
            EVENT_HEADER: event,
        }
        return await client.post(url, content=body, headers=headers)


@lru_cache()
def get_webhook_dispatcher() -> WebhookDispatcher:
    return WebhookDispatcher(timeout=get_settings().webhook_timeout_seconds)


# ==================== Validation ====================

def _validate_url(url: str) -> None:
    try:
        parsed = urlparse(url or "")
    except ValueError:
        raise BadRequest("Invalid URL. Must be a valid HTTP or HTTPS URL")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise BadRequest("Invalid URL. Must be a valid HTTP or HTTPS URL")


def _validate_events(events: List[str]) -> None:
    if not events:
        raise BadRequest("At least one event must be specified")
    invalid = [e for e in events if e not in VALID_EVENTS]
    if invalid:
        raise BadRequest(
            f"Invalid events: {', '.join(invalid)}. Valid events are: {', '.join(VALID_EVENTS)}",
            validEvents=list(VALID_EVENTS),
        )


def _validate_secret(secret: str) -> None:
    if not secret or len(secret) < MIN_SECRET_LENGTH:
        raise BadRequest(f"Secret must be at least {MIN_SECRET_LENGTH} characters long")


def _ensure_url_free(ctx: RequestContext, url: str, exclude_id: Optional[str] = None) -> None:
    if crud.get_webhook_endpoint_by_url(ctx.db, ctx.clinic_id, url, exclude_id):
        raise Conflict("A webhook endpoint with this URL already exists")


# ==================== Registration ====================

def list_endpoints(ctx: RequestContext, active: Optional[bool] = None, event: Optional[str] = None) -> List[models.WebhookEndpoint]:
    return crud.get_webhook_endpoints(ctx.db, ctx.clinic_id, active=active, event=event)


def get_endpoint(ctx: RequestContext, endpoint_id: str) -> models.WebhookEndpoint:
    return ensure_found(ctx.user, crud.get_webhook_endpoint(ctx.db, endpoint_id), "Webhook endpoint")


def create_endpoint(ctx: RequestContext, data: schemas.WebhookEndpointCreate) -> models.WebhookEndpoint:
    _validate_url(data.url)
    _validate_events(data.events)
    _validate_secret(data.secret)
    _ensure_url_free(ctx, data.url)

    endpoint = crud.save(
        ctx.db,
        models.WebhookEndpoint(clinic_id=ctx.clinic_id, **data.model_dump()),
        "A webhook endpoint with this URL already exists",
    )
    ctx.audit.log("webhookEndpoint.create", "WebhookEndpoint", endpoint.id, {
        "url": endpoint.url,
        "events": endpoint.events,
    })
    return endpoint


def update_endpoint(ctx: RequestContext, endpoint_id: str, data: schemas.WebhookEndpointUpdate) -> models.WebhookEndpoint:
    endpoint = get_endpoint(ctx, endpoint_id)
    changes = data.model_dump(exclude_unset=True)

    if "url" in changes:
        _validate_url(changes["url"])
        _ensure_url_free(ctx, changes["url"], exclude_id=endpoint.id)
    if "events" in changes:
        _validate_events(changes["events"])
    if "secret" in changes:
        _validate_secret(changes["secret"])

    endpoint = crud.update(ctx.db, endpoint, changes, "A webhook endpoint with this URL already exists")
    ctx.audit.log("webhookEndpoint.update", "WebhookEndpoint", endpoint.id, {
        "changes": sorted(changes),
    })
    return endpoint


def delete_endpoint(ctx: RequestContext, endpoint_id: str) -> None:
    endpoint = get_endpoint(ctx, endpoint_id)
    url = endpoint.url
    crud.delete(ctx.db, endpoint)
    ctx.audit.log("webhookEndpoint.delete", "WebhookEndpoint", endpoint_id, {"url": url})


def set_active(ctx: RequestContext, endpoint_id: str, active: bool) -> models.WebhookEndpoint:
    endpoint = get_endpoint(ctx, endpoint_id)
    endpoint = crud.update(ctx.db, endpoint, {"active": active})
    ctx.audit.log("webhookEndpoint.activate" if active else "webhookEndpoint.deactivate", "WebhookEndpoint", endpoint.id)
    return endpoint


def reset_failure_count(ctx: RequestContext, endpoint_id: str) -> models.WebhookEndpoint:
    endpoint = get_endpoint(ctx, endpoint_id)
    previous = endpoint.failure_count
    endpoint = crud.update(ctx.db, endpoint, {"failure_count": 0})
    ctx.audit.log("webhookEndpoint.resetFailureCount", "WebhookEndpoint", endpoint.id, {
        "previousFailureCount": previous,
    })
    return endpoint


# ==================== Delivery ====================

async def test_endpoint(ctx: RequestContext, endpoint_id: str) -> schemas.WebhookTestResult:
    """Deliver a single test event and surface the outcome to the caller."""
    endpoint = get_endpoint(ctx, endpoint_id)
    now = ctx.now()
    body = build_body(TEST_EVENT, ctx.clinic_id, {"message": "This is a test webhook"}, now)

    response = None
    error = None
    try:
        async with ctx.webhooks.client() as client:
            response = await ctx.webhooks.send(client, endpoint.url, endpoint.secret, TEST_EVENT, body)
    except httpx.HTTPError as exc:
        error = str(exc) or exc.__class__.__name__

    if response is not None and response.is_success:
        crud.record_webhook_success(ctx.db, endpoint, now)
        ctx.audit.log("webhookEndpoint.test", "WebhookEndpoint", endpoint.id, {
            "success": True,
            "statusCode": response.status_code,
        })
        return schemas.WebhookTestResult(success=True, status_code=response.status_code)

    crud.record_webhook_failure(ctx.db, endpoint, now)
    status_code = response.status_code if response is not None else None
    ctx.audit.log("webhookEndpoint.test", "WebhookEndpoint", endpoint.id, {
        "success": False,
        "statusCode": status_code,
        "error": error,
    })
    logger.warning("webhook_test_failed", endpoint_id=endpoint.id, status_code=status_code, error=error)
    if status_code is not None:
        raise WebhookTestFailed(f"Webhook test failed with status {status_code}", statusCode=status_code)
    raise WebhookTestFailed(f"Webhook test failed: {error}")


async def trigger(ctx: RequestContext, event: str, data: Dict[str, Any]) -> None:
    """Fan `event` out to every active subscribed endpoint of the clinic.

    Deliveries run concurrently and each outcome is recorded on its own
    endpoint. Nothing raised here reaches the caller.
    """
    try:
        endpoints = crud.get_webhook_endpoints(ctx.db, ctx.clinic_id, active=True, event=event)
        if not endpoints:
            return
        now = ctx.now()
        body = build_body(event, ctx.clinic_id, data, now)
        targets = [(e.url, e.secret) for e in endpoints]

        async with ctx.webhooks.client() as client:
            results = await asyncio.gather(
                *(ctx.webhooks.send(client, url, secret, event, body) for url, secret in targets),
                return_exceptions=True,
            )
    except Exception as exc:
        logger.error("webhook_trigger_failed", webhook_event=event, clinic_id=ctx.clinic_id, error=str(exc))
        return

    for endpoint, result in zip(endpoints, results):
        try:
            if isinstance(result, httpx.Response) and result.is_success:
                crud.record_webhook_success(ctx.db, endpoint, now)
                continue
            detail = result.status_code if isinstance(result, httpx.Response) else repr(result)
            logger.warning("webhook_delivery_failed", endpoint_id=endpoint.id, webhook_event=event, detail=detail)
            crud.record_webhook_failure(ctx.db, endpoint, now)
        except Exception as exc:
            logger.error("webhook_bookkeeping_failed", endpoint_id=endpoint.id, error=str(exc))
