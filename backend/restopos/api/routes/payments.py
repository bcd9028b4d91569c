"""Payment routes."""

from typing import Optional

from fastapi import APIRouter, status

from restopos.core.rbac import StaffCapabilities
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.models.payment import PaymentMethod, PaymentStatus
from restopos.schemas.payment import PaymentCreate, PaymentFail, PaymentProcess, PaymentRefund
from restopos.services.payment_service import PaymentService, serialize_payment

router = APIRouter()


@router.get("/")
def list_payments(
    caps: StaffCapabilities,
    db: DbSession,
    status: Optional[PaymentStatus] = None,
    method: Optional[PaymentMethod] = None,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = PaymentService(db).list(caps, status=status, method=method, skip=skip, limit=limit)
    return paginated_response([serialize_payment(p) for p in items], total, skip, limit)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_payment(body: PaymentCreate, caps: StaffCapabilities, db: DbSession):
    payment = PaymentService(db).create_payment(
        caps,
        method=body.method,
        subtotal=body.subtotal,
        tax=body.tax,
        discount=body.discount,
        total_amount=body.total_amount,
        session_id=body.session_id,
        order_id=body.order_id,
        notes=body.notes,
    )
    return serialize_payment(payment)


@router.get("/session/{session_id}")
def get_session_payments(session_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return [serialize_payment(p) for p in PaymentService(db).get_by_session(caps, session_id)]


@router.get("/{payment_id}")
def get_payment(payment_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_payment(PaymentService(db).get(caps, payment_id))


@router.get("/{payment_id}/bank-transfer")
def bank_transfer_info(payment_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return PaymentService(db).bank_transfer_info(caps, payment_id)


@router.post("/{payment_id}/process")
def process_payment(payment_id: PositiveIntId, caps: StaffCapabilities, db: DbSession, body: Optional[PaymentProcess] = None):
    body = body or PaymentProcess()
    payment = PaymentService(db).process_payment(caps, payment_id, transaction_id=body.transaction_id, notes=body.notes)
    return serialize_payment(payment)


@router.post("/{payment_id}/refund")
def refund_payment(payment_id: PositiveIntId, body: PaymentRefund, caps: StaffCapabilities, db: DbSession):
    payment = PaymentService(db).refund_payment(caps, payment_id, body.reason, notes=body.notes)
    return serialize_payment(payment)


@router.post("/{payment_id}/fail")
def mark_failed(payment_id: PositiveIntId, caps: StaffCapabilities, db: DbSession, body: Optional[PaymentFail] = None):
    payment = PaymentService(db).mark_failed(caps, payment_id, reason=body.reason if body else None)
    return serialize_payment(payment)
