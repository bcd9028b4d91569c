"""Dining table routes, including QR codes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from restopos.core.rbac import Permission, StaffCapabilities, require_permission
from restopos.core.validators import PositiveIntId
from restopos.db.session import DbSession
from restopos.models.table import TableStatus
from restopos.schemas.table import TableCreate, TableStatusUpdate, TableUpdate
from restopos.services.reservation_service import serialize_reservation
from restopos.services.table_service import TableService, serialize_table

router = APIRouter()


@router.get("/", dependencies=[Depends(require_permission(Permission.TABLE_VIEW))])
def list_tables(
    db: DbSession,
    status: Optional[TableStatus] = None,
    min_capacity: Optional[int] = Query(None, ge=1),
):
    return [serialize_table(t) for t in TableService(db).list(status=status, min_capacity=min_capacity)]


@router.get("/{table_id}", dependencies=[Depends(require_permission(Permission.TABLE_VIEW))])
def get_table(table_id: PositiveIntId, db: DbSession):
    return serialize_table(TableService(db).get(table_id))


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_table(body: TableCreate, caps: StaffCapabilities, db: DbSession):
    return serialize_table(TableService(db).create(caps, body.number, body.capacity, body.location))


@router.patch("/{table_id}")
def update_table(table_id: PositiveIntId, body: TableUpdate, caps: StaffCapabilities, db: DbSession):
    return serialize_table(TableService(db).update(caps, table_id, **body.model_dump(exclude_unset=True)))


@router.patch("/{table_id}/status")
def update_table_status(table_id: PositiveIntId, body: TableStatusUpdate, caps: StaffCapabilities, db: DbSession):
    return serialize_table(TableService(db).update_status(caps, table_id, body.status))


@router.delete("/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_table(table_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    TableService(db).delete(caps, table_id)


@router.get("/{table_id}/qr-code")
def get_qr_code(table_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    """Token and URL to print on the table. Image rendering is left to the client."""
    return TableService(db).generate_qr_token(caps, table_id)


@router.post("/{table_id}/qr-code/rotate")
def rotate_qr_code(table_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    service = TableService(db)
    service.rotate_qr_key(caps, table_id)
    return service.generate_qr_token(caps, table_id)


@router.get("/{table_id}/reservations", dependencies=[Depends(require_permission(Permission.RESERVATION_VIEW))])
def upcoming_reservations(
    table_id: PositiveIntId,
    db: DbSession,
    hours: int = Query(24, ge=1, le=168),
):
    return [serialize_reservation(r) for r in TableService(db).upcoming_reservations(table_id, hours=hours)]
