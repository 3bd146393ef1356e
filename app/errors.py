# app/errors.py
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ClinicAPIError(Exception):
    """Domain error carrying a machine readable code and optional extra fields."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extensions: Any):
        super().__init__(message)
        self.message = message
        self.extensions: Dict[str, Any] = extensions

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "code": self.code}
        body.update(self.extensions)
        return body


class Unauthenticated(ClinicAPIError):
    code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(ClinicAPIError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ClinicAPIError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class BadRequest(ClinicAPIError):
    code = "BAD_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(ClinicAPIError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class WebhookTestFailed(ClinicAPIError):
    code = "WEBHOOK_TEST_FAILED"
    status_code = status.HTTP_502_BAD_GATEWAY


class CRUDError(ClinicAPIError):
    """Raised by the data layer when the database itself fails."""
    code = "DATABASE_ERROR"


async def clinic_api_error_handler(request: Request, exc: ClinicAPIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ClinicAPIError, clinic_api_error_handler)
