"""User schemas."""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from restopos.core.rbac import UserRole


class UserUpdate(BaseModel):
    """User update schema."""

    name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
