"""Persisted user notifications."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum as SQLEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from restopos.db.base import Base, utcnow
from restopos.models.validators import validate_dict


class NotificationType(str, Enum):
    RESERVATION_NEW = "RESERVATION_NEW"
    RESERVATION_CONFIRMED = "RESERVATION_CONFIRMED"
    RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
    ORDER_NEW = "ORDER_NEW"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_READY = "ORDER_READY"
    ORDER_ITEM_READY = "ORDER_ITEM_READY"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CUSTOMER_REQUEST = "CUSTOMER_REQUEST"
    TABLE_SESSION_STARTED = "TABLE_SESSION_STARTED"
    SYSTEM_ALERT = "SYSTEM_ALERT"


class Notification(Base):
    """User notification."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[NotificationType] = mapped_column(SQLEnum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    # "metadata" is reserved on declarative classes
    data: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    @validates("data")
    def _validate_data(self, key, value):
        return validate_dict(key, value)
