# app/routers/auth.py
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app import schemas
from app.config import get_settings
from app.context import RequestContext
from app.database import get_db
from app.limiter import limiter
from app.security import get_request_context, require_access
from app.services import auth_service
from app.session_store import TokenStore, get_token_store

router = APIRouter(prefix="/auth", tags=["Authentication"])

settings = get_settings()


def _client(request: Request) -> tuple:
    ip_address: Optional[str] = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.post("/register", response_model=schemas.TokenResponse, status_code=201)
@limiter.limit(settings.login_rate_limit)
def register(
    request: Request,
    data: schemas.RegisterRequest,
    db: Session = Depends(get_db),
    store: TokenStore = Depends(get_token_store),
):
    ip_address, user_agent = _client(request)
    return auth_service.register(db, store, data, ip_address, user_agent)


@router.post("/login", response_model=schemas.TokenResponse)
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    data: schemas.LoginRequest,
    db: Session = Depends(get_db),
    store: TokenStore = Depends(get_token_store),
):
    ip_address, user_agent = _client(request)
    return auth_service.login(db, store, data, ip_address, user_agent)


@router.post("/refresh", response_model=schemas.TokenResponse)
def refresh(
    request: Request,
    data: schemas.RefreshRequest,
    db: Session = Depends(get_db),
    store: TokenStore = Depends(get_token_store),
):
    ip_address, user_agent = _client(request)
    return auth_service.refresh(db, store, data.refresh_token, ip_address, user_agent)


@router.post("/logout", response_model=schemas.MessageResponse, dependencies=[Depends(require_access())])
def logout(
    data: schemas.RefreshRequest,
    ctx: RequestContext = Depends(get_request_context),
    store: TokenStore = Depends(get_token_store),
):
    auth_service.logout(ctx, store, data.refresh_token)
    return {"message": "Logged out"}


@router.post("/logout-all", response_model=schemas.CountResponse, dependencies=[Depends(require_access())])
def logout_all(
    ctx: RequestContext = Depends(get_request_context),
    store: TokenStore = Depends(get_token_store),
):
    return {"count": auth_service.logout_all(ctx, store)}


@router.get("/me", response_model=schemas.UserResponse)
def read_users_me(ctx: RequestContext = Depends(get_request_context)):
    return auth_service.me(ctx)
