"""Authentication routes."""

import logging

from fastapi import APIRouter, Request, status

from restopos.core.rate_limit import limiter
from restopos.core.rbac import CurrentUser, StaffCapabilities
from restopos.db.session import DbSession
from restopos.schemas.auth import ChangePasswordRequest, LoginRequest, RefreshRequest, RegisterRequest, Token
from restopos.services.user_service import AuthService, UserService, serialize_user

logger = logging.getLogger("auth")

router = APIRouter()


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
def login(request: Request, login_request: LoginRequest, db: DbSession):
    """Authenticate with username and password; returns access and refresh tokens."""
    client_ip = request.client.host if request.client else "unknown"
    return AuthService(db).login(login_request.username, login_request.password, client_ip=client_ip)


@router.post("/refresh", response_model=Token)
@limiter.limit("20/minute")
def refresh(request: Request, body: RefreshRequest, db: DbSession):
    return AuthService(db).refresh(body.refresh_token)


@router.get("/me")
def me(current_user: CurrentUser, caps: StaffCapabilities, db: DbSession):
    return serialize_user(UserService(db).get(caps, current_user.user_id))


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, caps: StaffCapabilities, db: DbSession):
    """Create a staff account. Admin only."""
    user = UserService(db).register(
        caps,
        username=body.username,
        password=body.password,
        name=body.name,
        email=body.email,
        role=body.role,
    )
    return serialize_user(user)


@router.post("/change-password")
def change_password(body: ChangePasswordRequest, current_user: CurrentUser, db: DbSession):
    AuthService(db).change_password(current_user.user_id, body.current_password, body.new_password)
    return {"message": "Password changed"}
