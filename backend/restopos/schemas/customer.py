"""Customer schemas."""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field

PHONE_PATTERN = r"^\+?[0-9 ()-]{6,20}$"


class CustomerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
