"""Authentication schemas."""

from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from restopos.core.rbac import UserRole


class LoginRequest(BaseModel):
    """Login request body."""

    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """Staff account creation (admin only)."""

    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(..., min_length=8, max_length=128)
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    role: UserRole = UserRole.WAITER


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)


class AuthUser(BaseModel):
    id: int
    username: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole
    is_active: bool = True
    permissions: List[str]


class Token(BaseModel):
    """JWT token pair with the logged-in user."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: AuthUser
