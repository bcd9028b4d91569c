"""Service requests raised by guests at a table (call waiter, ask for the bill)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from restopos.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from restopos.models.table import TableSession


class ActionType(str, Enum):
    CALL_WAITER = "CALL_WAITER"
    REQUEST_BILL = "REQUEST_BILL"
    REQUEST_WATER = "REQUEST_WATER"
    OTHER = "OTHER"


class ActionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class StaffAction(Base, TimestampMixin):
    """Guest request routed to floor staff."""

    __tablename__ = "staff_actions"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("table_sessions.id"), nullable=False, index=True)
    action_type: Mapped[ActionType] = mapped_column(SQLEnum(ActionType), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ActionStatus] = mapped_column(
        SQLEnum(ActionStatus), default=ActionStatus.PENDING, nullable=False, index=True
    )
    handled_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped["TableSession"] = relationship(back_populates="actions")
