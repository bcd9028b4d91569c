"""Table and table session schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from restopos.models.table import SessionStatus, TableStatus


class TableCreate(BaseModel):
    number: int = Field(..., ge=1)
    capacity: int = Field(4, ge=1, le=50)
    location: Optional[str] = Field(None, max_length=100)


class TableUpdate(BaseModel):
    number: Optional[int] = Field(None, ge=1)
    capacity: Optional[int] = Field(None, ge=1, le=50)
    location: Optional[str] = Field(None, max_length=100)


class TableStatusUpdate(BaseModel):
    status: TableStatus


class SessionInit(BaseModel):
    """Guest redeems the QR token printed on the table."""

    token: str = Field(..., min_length=1)
    customer_count: int = Field(1, ge=1, le=50)
    notes: Optional[str] = Field(None, max_length=500)


class SessionCreate(BaseModel):
    table_id: int = Field(..., gt=0)
    customer_count: int = Field(1, ge=1, le=50)
    notes: Optional[str] = Field(None, max_length=500)


class SessionUpdate(BaseModel):
    customer_count: Optional[int] = Field(None, ge=1, le=50)
    notes: Optional[str] = Field(None, max_length=500)
    status: Optional[SessionStatus] = None


class SessionClose(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)
