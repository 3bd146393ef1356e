import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import get_settings
from app.core.logging import setup_logging
from app.database import create_tables
from app.errors import register_exception_handlers
from app.limiter import limiter
from app.routers import (
    appointments, assistants, auth, clinics, doctors, health, logs, patients, reminders, slots, users, webhooks,
)

setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)


@app.on_event("startup")
def on_startup():
    create_tables()
    logger.info("startup_complete", environment=settings.environment)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

app.include_router(health.router, prefix="/api/v1")
app.include_router(auth.router, prefix="/api/v1")
app.include_router(clinics.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(doctors.router, prefix="/api/v1")
app.include_router(assistants.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(reminders.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(slots.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")
app.include_router(logs.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
