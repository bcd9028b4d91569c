"""Reservation routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from restopos.core.rbac import Permission, StaffCapabilities, require_permission
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.models.reservation import ReservationStatus
from restopos.schemas.reservation import ReservationCancel, ReservationCreate, ReservationUpdate
from restopos.services.reservation_service import ReservationService, serialize_reservation
from restopos.services.table_service import serialize_table

router = APIRouter()

_can_view = [Depends(require_permission(Permission.RESERVATION_VIEW))]


@router.get("/", dependencies=_can_view)
def list_reservations(
    db: DbSession,
    status: Optional[ReservationStatus] = None,
    date: Optional[datetime] = None,
    table_id: Optional[int] = None,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = ReservationService(db).list(status=status, date=date, table_id=table_id, skip=skip, limit=limit)
    return paginated_response([serialize_reservation(r) for r in items], total, skip, limit)


@router.get("/available-tables", dependencies=_can_view)
def available_tables(db: DbSession, at: datetime, party_size: int = Query(..., ge=1, le=50)):
    """Tables that can seat ``party_size`` with no reservation clash around ``at``."""
    return [serialize_table(t) for t in ReservationService(db).available_tables(at, party_size)]


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_reservation(body: ReservationCreate, caps: StaffCapabilities, db: DbSession):
    reservation = ReservationService(db).create(
        caps,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        customer_email=body.customer_email,
        table_id=body.table_id,
        party_size=body.party_size,
        reservation_time=body.reservation_time,
        notes=body.notes,
    )
    return serialize_reservation(reservation)


@router.get("/{reservation_id}", dependencies=_can_view)
def get_reservation(reservation_id: PositiveIntId, db: DbSession):
    return serialize_reservation(ReservationService(db).get(reservation_id))


@router.patch("/{reservation_id}")
def update_reservation(reservation_id: PositiveIntId, body: ReservationUpdate, caps: StaffCapabilities, db: DbSession):
    reservation = ReservationService(db).update(caps, reservation_id, **body.model_dump(exclude_unset=True))
    return serialize_reservation(reservation)


@router.post("/{reservation_id}/confirm")
def confirm_reservation(reservation_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_reservation(ReservationService(db).confirm(caps, reservation_id))


@router.post("/{reservation_id}/cancel")
def cancel_reservation(
    reservation_id: PositiveIntId,
    caps: StaffCapabilities,
    db: DbSession,
    body: Optional[ReservationCancel] = None,
):
    reservation = ReservationService(db).cancel(caps, reservation_id, reason=body.reason if body else None)
    return serialize_reservation(reservation)


@router.post("/{reservation_id}/complete")
def complete_reservation(reservation_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_reservation(ReservationService(db).complete(caps, reservation_id))


@router.delete("/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_reservation(reservation_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    ReservationService(db).delete(caps, reservation_id)
