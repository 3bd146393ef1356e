# app/routers/health.py
from datetime import datetime, timezone

from fastapi import APIRouter

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
)


@router.get("")
def liveness():
    """Liveness probe. Does not touch the database."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
