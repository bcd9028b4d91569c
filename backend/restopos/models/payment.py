"""Payments and the bank transfer log used to settle them."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from restopos.db.base import Base, TimestampMixin, utcnow
from restopos.models.validators import non_negative

if TYPE_CHECKING:
    from restopos.models.order import Order
    from restopos.models.table import TableSession


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    BANKING = "BANKING"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class TransferOutcome(str, Enum):
    MATCHED = "MATCHED"
    REJECTED = "REJECTED"
    IGNORED = "IGNORED"


class Payment(Base, TimestampMixin):
    """Settlement of a table session (dine-in) or a takeaway order."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("table_sessions.id"), nullable=True, index=True
    )
    order_id: Mapped[Optional[int]] = mapped_column(ForeignKey("orders.id"), nullable=True, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(SQLEnum(PaymentMethod), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    # Correlation key for bank transfers, see services.transaction_ids
    transaction_id: Mapped[str] = mapped_column(String(12), unique=True, index=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    processed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped[Optional["TableSession"]] = relationship()
    order: Mapped[Optional["Order"]] = relationship()

    @validates("subtotal", "tax", "discount", "total_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class BankTransfer(Base):
    """Every bank webhook delivery, kept for manual reconciliation."""

    __tablename__ = "bank_transfers"

    id: Mapped[int] = mapped_column(primary_key=True)
    provider_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True, nullable=False)
    gateway: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_date: Mapped[str] = mapped_column(String(50), nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transfer_type: Mapped[str] = mapped_column(String(10), nullable=False)  # in, out
    transfer_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    accumulated: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    sub_account: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outcome: Mapped[TransferOutcome] = mapped_column(SQLEnum(TransferOutcome), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    response_status: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("payments.id"), nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
