"""Dining tables and the table sessions opened on them."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, as_utc, utcnow
from restopos.models.validators import positive

if TYPE_CHECKING:
    from restopos.models.order import Order
    from restopos.models.staff_action import StaffAction


class TableStatus(str, Enum):
    """Physical state of a table."""

    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


class SessionStatus(str, Enum):
    """Status of a dine-in session."""

    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Table(Base, TimestampMixin):
    """Restaurant table for seating."""

    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    status: Mapped[TableStatus] = mapped_column(
        SQLEnum(TableStatus), default=TableStatus.AVAILABLE, nullable=False
    )
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # Main floor, Patio
    # Rotating this key revokes every QR token printed for the table
    qr_code_key: Mapped[str] = mapped_column(String(64), nullable=False)

    sessions: Mapped[List["TableSession"]] = relationship(back_populates="table")

    @validates("number", "capacity")
    def _validate_positive(self, key, value):
        return positive(key, value)


class TableSession(Base):
    """One dine-in occupancy of a table, authenticated by a secret."""

    __tablename__ = "table_sessions"
    __table_args__ = (
        # At most one OPEN session per table
        Index(
            "uq_table_sessions_open_table",
            "table_id",
            unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(ForeignKey("tables.id"), nullable=False, index=True)
    secret_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        SQLEnum(SessionStatus), default=SessionStatus.OPEN, nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    table: Mapped[Table] = relationship(back_populates="sessions")
    orders: Mapped[List["Order"]] = relationship(back_populates="session", order_by="Order.id")
    actions: Mapped[List["StaffAction"]] = relationship(back_populates="session", order_by="StaffAction.id")

    @validates("customer_count")
    def _validate_customer_count(self, key, value):
        return positive(key, value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expires_at)
