"""Payments: creation, settlement, refunds and bank transfer reconciliation.

Status changes go through ``compare_and_set`` so two cashiers (or a cashier
and the bank webhook) can never both settle or refund the same payment. The
loser of the race gets a ConflictError.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restopos.core.config import settings
from restopos.core.exceptions import ConflictError, NotFoundError, ValidationError, WebhookRejected
from restopos.core.rbac import Capabilities, Permission, UserRole
from restopos.core.validators import compare_and_set
from restopos.db.base import as_utc, utcnow
from restopos.models.notification import NotificationType
from restopos.models.order import SETTLED_ORDER_STATUSES, Order, OrderStatus
from restopos.models.payment import BankTransfer, Payment, PaymentMethod, PaymentStatus, TransferOutcome
from restopos.models.table import SessionStatus, TableSession
from restopos.services.notification_service import NOTIFICATION_ROLES, NotificationService
from restopos.services.session_service import close_table_session
from restopos.services.state_machines import ORDER_MACHINE, PAYMENT_MACHINE
from restopos.services.transaction_ids import extract_transaction_id, generate_transaction_id

logger = logging.getLogger(__name__)

SEPAY_QR_BASE_URL = "https://qr.sepay.vn/img"
MAX_TRANSACTION_ID_ATTEMPTS = 5
OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PAID)


def transfer_amount_for(total: Decimal) -> Decimal:
    """Bank transfer amount for a bill total, in whole currency units."""
    return (Decimal(total) * settings.bank_transfer_multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def ensure_orders_settled(session: TableSession) -> None:
    """Refuse to bill a session while any of its orders is still in progress."""
    open_orders = [o for o in session.orders if o.status not in SETTLED_ORDER_STATUSES]
    if open_orders:
        raise ConflictError(
            f"Session {session.id} has {len(open_orders)} unfinished order(s)",
            details={"order_ids": [o.id for o in open_orders]},
        )


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "session_id": payment.session_id,
        "order_id": payment.order_id,
        "subtotal": str(payment.subtotal),
        "tax": str(payment.tax),
        "discount": str(payment.discount),
        "total_amount": str(payment.total_amount),
        "method": payment.method.value,
        "status": payment.status.value,
        "transaction_id": payment.transaction_id,
        "notes": payment.notes,
        "refund_reason": payment.refund_reason,
        "failure_reason": payment.failure_reason,
        "processed_by_id": payment.processed_by_id,
        "paid_at": as_utc(payment.paid_at).isoformat() if payment.paid_at else None,
        "refunded_at": as_utc(payment.refunded_at).isoformat() if payment.refunded_at else None,
        "created_at": as_utc(payment.created_at).isoformat() if payment.created_at else None,
    }


class PaymentService:
    """Service for payments."""

    def __init__(self, db: Session):
        self.db = db
        self.notifier = NotificationService(db)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, caps: Capabilities, payment_id: int) -> Payment:
        caps.require(Permission.PAYMENT_VIEW)
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    def get_by_session(self, caps: Capabilities, session_id: int) -> List[Payment]:
        caps.require(Permission.PAYMENT_VIEW)
        if self.db.get(TableSession, session_id) is None:
            raise NotFoundError("Table session", session_id)
        return (
            self.db.query(Payment)
            .filter(Payment.session_id == session_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )

    def list(
        self,
        caps: Capabilities,
        status: Optional[PaymentStatus] = None,
        method: Optional[PaymentMethod] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Payment], int]:
        caps.require(Permission.PAYMENT_VIEW)
        query = self.db.query(Payment)
        if status is not None:
            query = query.filter(Payment.status == status)
        if method is not None:
            query = query.filter(Payment.method == method)
        total = query.count()
        items = query.order_by(Payment.created_at.desc(), Payment.id.desc()).offset(skip).limit(limit).all()
        return items, total

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _new_transaction_id(self) -> str:
        for _ in range(MAX_TRANSACTION_ID_ATTEMPTS):
            candidate = generate_transaction_id()
            if self.db.query(Payment.id).filter(Payment.transaction_id == candidate).first() is None:
                return candidate
            logger.warning(f"Transaction id collision on {candidate}, retrying")
        raise ConflictError("Could not allocate a unique transaction id, please retry")

    def create_payment(
        self,
        caps: Capabilities,
        method: PaymentMethod,
        subtotal: Decimal,
        tax: Decimal,
        discount: Decimal,
        total_amount: Decimal,
        session_id: Optional[int] = None,
        order_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        caps.require(Permission.PAYMENT_PROCESS)
        subtotal, tax, discount, total_amount = (Decimal(v) for v in (subtotal, tax, discount, total_amount))
        if min(subtotal, tax, discount, total_amount) < 0:
            raise ValidationError("Payment amounts cannot be negative")
        if total_amount != subtotal + tax - discount:
            raise ValidationError(
                f"total_amount {total_amount} does not equal subtotal + tax - discount "
                f"({subtotal + tax - discount})"
            )
        if (session_id is None) == (order_id is None):
            raise ValidationError("A payment references exactly one of session_id or order_id")

        if session_id is not None:
            session = self.db.get(TableSession, session_id)
            if session is None:
                raise NotFoundError("Table session", session_id)
            if session.status != SessionStatus.OPEN:
                raise ConflictError(f"Table session {session_id} is closed")
            ensure_orders_settled(session)
            existing = self.db.query(Payment.id).filter(
                Payment.session_id == session_id, Payment.status.in_(OPEN_PAYMENT_STATUSES)
            ).first()
        else:
            order = self.db.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            if order.status == OrderStatus.CANCELLED:
                raise ConflictError(f"Order {order_id} is cancelled")
            existing = self.db.query(Payment.id).filter(
                Payment.order_id == order_id, Payment.status.in_(OPEN_PAYMENT_STATUSES)
            ).first()
        if existing is not None:
            raise ConflictError(f"Payment {existing[0]} is already pending or paid for this bill")

        payment = Payment(
            session_id=session_id,
            order_id=order_id,
            subtotal=subtotal,
            tax=tax,
            discount=discount,
            total_amount=total_amount,
            method=method,
            status=PaymentStatus.PENDING,
            transaction_id=self._new_transaction_id(),
            notes=notes,
            processed_by_id=caps.user_id,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} created ({method.value} {total_amount}, tx {payment.transaction_id})")
        return payment

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def process_payment(
        self,
        caps: Capabilities,
        payment_id: int,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        caps.require(Permission.PAYMENT_PROCESS)
        payment = self.get(caps, payment_id)
        PAYMENT_MACHINE.ensure_transition(payment.status, PaymentStatus.PAID)
        if payment.session is not None:
            ensure_orders_settled(payment.session)
        if payment.method == PaymentMethod.BANKING and caps.is_staff:
            if not transaction_id or transaction_id.strip().upper() != payment.transaction_id:
                raise ValidationError(
                    "Bank transfers are confirmed by the bank; supply the matching transaction id to settle manually"
                )
        self._mark_paid(payment, processed_by_id=caps.user_id, notes=notes)
        self.db.commit()
        self.db.refresh(payment)
        self.notifier.publish_pending()
        return payment

    def _mark_paid(self, payment: Payment, processed_by_id: Optional[int], notes: Optional[str] = None) -> None:
        """PENDING -> PAID and settle what the payment covers. The caller commits."""
        now = utcnow()
        values: Dict[str, Any] = {"status": PaymentStatus.PAID, "paid_at": now}
        if processed_by_id is not None:
            values["processed_by_id"] = processed_by_id
        if notes:
            values["notes"] = notes
        compare_and_set(
            self.db, Payment, payment.id, PaymentStatus.PENDING, values,
            message=f"Payment {payment.id} was already processed",
        )
        self.db.refresh(payment)

        orders: List[Order] = []
        if payment.session_id is not None:
            session = payment.session
            orders = list(session.orders)
            if session.status == SessionStatus.OPEN:
                close_table_session(self.db, session, now)
        elif payment.order is not None:
            orders = [payment.order]
        for order in orders:
            if ORDER_MACHINE.can_transition(order.status, OrderStatus.COMPLETED):
                order.status = OrderStatus.COMPLETED

        self.notifier.notify_roles(
            NotificationType.PAYMENT_SUCCESS,
            "Payment received",
            f"Payment {payment.transaction_id} of {payment.total_amount} ({payment.method.value}) succeeded",
            data={"payment_id": payment.id, "session_id": payment.session_id, "order_id": payment.order_id},
        )
        self._push_status(payment)
        logger.info(f"Payment {payment.id} PAID via {payment.method.value}")

    def _push_status(self, payment: Payment) -> None:
        self.notifier.push_event(
            "paymentStatus",
            {
                "payment_id": payment.id,
                "transaction_id": payment.transaction_id,
                "status": payment.status.value,
                "session_id": payment.session_id,
                "order_id": payment.order_id,
            },
            roles=NOTIFICATION_ROLES[NotificationType.PAYMENT_SUCCESS] + (UserRole.WAITER,),
        )

    def refund_payment(
        self,
        caps: Capabilities,
        payment_id: int,
        reason: str,
        notes: Optional[str] = None,
    ) -> Payment:
        caps.require(Permission.PAYMENT_REFUND)
        if not reason or not reason.strip():
            raise ValidationError("A refund reason is required")
        payment = self.get(caps, payment_id)
        PAYMENT_MACHINE.ensure_transition(payment.status, PaymentStatus.REFUNDED)
        values: Dict[str, Any] = {
            "status": PaymentStatus.REFUNDED,
            "refund_reason": reason.strip(),
            "refunded_at": utcnow(),
        }
        if notes:
            values["notes"] = notes
        compare_and_set(
            self.db, Payment, payment.id, PaymentStatus.PAID, values,
            message=f"Payment {payment.id} changed status concurrently",
        )
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} refunded: {payment.refund_reason}")
        return payment

    def mark_failed(self, caps: Capabilities, payment_id: int, reason: Optional[str] = None) -> Payment:
        caps.require(Permission.PAYMENT_PROCESS)
        payment = self.get(caps, payment_id)
        PAYMENT_MACHINE.ensure_transition(payment.status, PaymentStatus.FAILED)
        compare_and_set(
            self.db, Payment, payment.id, PaymentStatus.PENDING,
            {"status": PaymentStatus.FAILED, "failure_reason": reason},
            message=f"Payment {payment.id} changed status concurrently",
        )
        self.db.refresh(payment)
        self.notifier.notify_roles(
            NotificationType.PAYMENT_FAILED,
            "Payment failed",
            f"Payment {payment.transaction_id} failed" + (f": {reason}" if reason else ""),
            data={"payment_id": payment.id, "session_id": payment.session_id, "order_id": payment.order_id},
        )
        self._push_status(payment)
        self.db.commit()
        self.db.refresh(payment)
        self.notifier.publish_pending()
        return payment

    # ------------------------------------------------------------------
    # Bank transfer
    # ------------------------------------------------------------------

    def bank_transfer_info(self, caps: Capabilities, payment_id: int) -> Dict[str, Any]:
        payment = self.get(caps, payment_id)
        if payment.method != PaymentMethod.BANKING:
            raise ConflictError(f"Payment {payment.id} is not a bank transfer")
        amount = int(transfer_amount_for(payment.total_amount))
        content = f"Thanh toan {payment.transaction_id}"
        query = urlencode({
            "acc": settings.sepay_bank_account,
            "bank": settings.sepay_bank_name,
            "amount": amount,
            "des": content,
        })
        return {
            "account_number": settings.sepay_bank_account,
            "bank_name": settings.sepay_bank_name,
            "account_holder": settings.sepay_account_holder,
            "amount": str(payment.total_amount),
            "transfer_amount": amount,
            "content": content,
            "transaction_id": payment.transaction_id,
            "qr_code_url": f"{SEPAY_QR_BASE_URL}?{query}",
        }

    def handle_bank_webhook(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Reconcile one bank notification against a pending BANKING payment.

        Every delivery is stored as a BankTransfer. Rejections raise
        WebhookRejected after the transfer row is committed.
        """
        provider_id = data["id"]
        recorded = self.db.query(BankTransfer).filter(BankTransfer.provider_id == provider_id).first()
        if recorded is not None:
            if recorded.outcome == TransferOutcome.REJECTED:
                logger.info(f"Bank transfer {provider_id} redelivered, was rejected: {recorded.reason}")
                raise WebhookRejected(recorded.reason, status_code=recorded.response_status or 400)
            logger.info(f"Bank transfer {provider_id} already recorded, acknowledging")
            return {"success": True, "message": "Transfer already processed"}

        transfer = BankTransfer(
            provider_id=provider_id,
            gateway=data["gateway"],
            transaction_date=data["transaction_date"],
            account_number=data.get("account_number"),
            code=data.get("code"),
            content=data.get("content"),
            transfer_type=data["transfer_type"],
            transfer_amount=Decimal(data["transfer_amount"]),
            accumulated=data.get("accumulated"),
            sub_account=data.get("sub_account"),
            reference_code=data.get("reference_code"),
            description=data.get("description"),
            outcome=TransferOutcome.IGNORED,
        )
        self.db.add(transfer)

        if transfer.transfer_type != "in":
            transfer.reason = "Outgoing transfer"
            self._save_transfer(transfer)
            return {"success": True, "message": "Outgoing transfer ignored"}

        tx_id = extract_transaction_id(transfer.code) or extract_transaction_id(transfer.content)
        if tx_id is None:
            self._reject(transfer, "No valid transaction id in transfer content", 400)

        payment = self.db.query(Payment).filter(Payment.transaction_id == tx_id).first()
        if payment is None:
            self._reject(transfer, f"Unknown transaction id {tx_id}", 404)
        transfer.payment_id = payment.id
        if payment.method != PaymentMethod.BANKING:
            self._reject(transfer, f"Payment {payment.id} is not a bank transfer payment", 409)
        if payment.status != PaymentStatus.PENDING:
            self._reject(transfer, f"Payment {payment.id} is {payment.status.value}, not PENDING", 409)
        expected = transfer_amount_for(payment.total_amount)
        if transfer.transfer_amount != expected:
            self._reject(
                transfer,
                f"Amount mismatch for {tx_id}: expected {expected}, received {transfer.transfer_amount}",
                400,
            )

        self._mark_paid(payment, processed_by_id=None, notes=f"Bank transfer {transfer.reference_code or provider_id}")
        transfer.outcome = TransferOutcome.MATCHED
        self._save_transfer(transfer)
        self.notifier.publish_pending()
        logger.info(f"Bank transfer {provider_id} settled payment {payment.id}")
        return {"success": True, "message": "Payment processed", "payment_id": payment.id}

    def _reject(self, transfer: BankTransfer, reason: str, status_code: int) -> None:
        transfer.outcome = TransferOutcome.REJECTED
        transfer.reason = reason
        transfer.response_status = status_code
        self._save_transfer(transfer)
        logger.warning(f"Bank transfer {transfer.provider_id} rejected: {reason}")
        raise WebhookRejected(reason, status_code=status_code)

    def _save_transfer(self, transfer: BankTransfer) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            # Same delivery stored by a concurrent request
            self.db.rollback()
            logger.info(f"Bank transfer {transfer.provider_id} recorded concurrently: {e.orig}")
            raise ConflictError("Transfer is already being processed") from e
