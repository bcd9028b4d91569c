"""Reservation schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from restopos.schemas.customer import PHONE_PATTERN


class ReservationCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: str = Field(..., pattern=PHONE_PATTERN)
    customer_email: Optional[EmailStr] = None
    table_id: int = Field(..., gt=0)
    party_size: int = Field(..., ge=1, le=50)
    reservation_time: datetime
    notes: Optional[str] = Field(None, max_length=1000)


class ReservationUpdate(BaseModel):
    table_id: Optional[int] = Field(None, gt=0)
    party_size: Optional[int] = Field(None, ge=1, le=50)
    reservation_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ReservationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
