"""Dining tables: CRUD, status management and QR tokens."""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from restopos.core.config import settings
from restopos.core.exceptions import ConflictError, NotFoundError, UnauthorizedError
from restopos.core.rbac import Capabilities, Permission
from restopos.core.security import create_qr_token, decode_qr_token, generate_qr_code_key
from restopos.db.base import utcnow
from restopos.models.reservation import Reservation, ReservationStatus
from restopos.models.table import SessionStatus, Table, TableSession, TableStatus
from restopos.services.reservation_service import RESERVATION_WINDOW, find_conflicting_reservation

logger = logging.getLogger(__name__)

INVALID_QR_MESSAGE = "Invalid or expired QR code token"


def serialize_table(table: Table) -> Dict[str, Any]:
    return {
        "id": table.id,
        "number": table.number,
        "capacity": table.capacity,
        "status": table.status.value,
        "location": table.location,
    }


class TableService:
    """Service for restaurant tables."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, table_id: int) -> Table:
        table = self.db.get(Table, table_id)
        if table is None:
            raise NotFoundError("Table", table_id)
        return table

    def list(self, status: Optional[TableStatus] = None, min_capacity: Optional[int] = None) -> List[Table]:
        query = self.db.query(Table)
        if status is not None:
            query = query.filter(Table.status == status)
        if min_capacity is not None:
            query = query.filter(Table.capacity >= min_capacity)
        return query.order_by(Table.number).all()

    def has_open_session(self, table_id: int) -> bool:
        return (
            self.db.query(TableSession.id)
            .filter(TableSession.table_id == table_id, TableSession.status == SessionStatus.OPEN)
            .first()
            is not None
        )

    def _ensure_number_free(self, number: int, exclude_id: Optional[int] = None) -> None:
        query = self.db.query(Table.id).filter(Table.number == number)
        if exclude_id is not None:
            query = query.filter(Table.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"Table number {number} already exists")

    def create(self, caps: Capabilities, number: int, capacity: int, location: Optional[str] = None) -> Table:
        caps.require(Permission.TABLE_MANAGE)
        self._ensure_number_free(number)
        table = Table(
            number=number,
            capacity=capacity,
            location=location,
            status=TableStatus.AVAILABLE,
            qr_code_key=generate_qr_code_key(),
        )
        self.db.add(table)
        self.db.commit()
        self.db.refresh(table)
        logger.info(f"Table {table.number} created (id={table.id})")
        return table

    def update(
        self,
        caps: Capabilities,
        table_id: int,
        number: Optional[int] = None,
        capacity: Optional[int] = None,
        location: Optional[str] = None,
    ) -> Table:
        caps.require(Permission.TABLE_MANAGE)
        table = self.get(table_id)
        if number is not None and number != table.number:
            self._ensure_number_free(number, exclude_id=table.id)
            table.number = number
        if capacity is not None:
            table.capacity = capacity
        if location is not None:
            table.location = location
        self.db.commit()
        self.db.refresh(table)
        return table

    def update_status(self, caps: Capabilities, table_id: int, status: TableStatus) -> Table:
        caps.require(Permission.TABLE_MANAGE)
        table = self.get(table_id)
        if status == table.status:
            return table

        if status in (TableStatus.AVAILABLE, TableStatus.OUT_OF_SERVICE, TableStatus.RESERVED) \
                and self.has_open_session(table.id):
            raise ConflictError(
                f"Table #{table.number} has an open session; close it before changing status to {status.value}"
            )
        if table.status == TableStatus.RESERVED and status == TableStatus.AVAILABLE:
            upcoming = find_conflicting_reservation(
                self.db, table.id, utcnow(), statuses=(ReservationStatus.CONFIRMED,)
            )
            if upcoming is not None:
                raise ConflictError(
                    f"Table #{table.number} has a confirmed reservation at "
                    f"{upcoming.reservation_time.isoformat()}"
                )

        table.status = status
        self.db.commit()
        self.db.refresh(table)
        logger.info(f"Table {table.number} status -> {status.value}")
        return table

    def delete(self, caps: Capabilities, table_id: int) -> None:
        caps.require(Permission.TABLE_MANAGE)
        table = self.get(table_id)
        if self.has_open_session(table.id):
            raise ConflictError(f"Cannot delete table #{table.number} while a session is open")
        has_history = (
            self.db.query(TableSession.id).filter(TableSession.table_id == table.id).first() is not None
            or self.db.query(Reservation.id).filter(Reservation.table_id == table.id).first() is not None
        )
        if has_history:
            raise ConflictError(
                f"Table #{table.number} has sessions or reservations; set it OUT_OF_SERVICE instead"
            )
        self.db.delete(table)
        self.db.commit()

    # ------------------------------------------------------------------
    # QR tokens
    # ------------------------------------------------------------------

    def generate_qr_token(self, caps: Capabilities, table_id: int) -> Dict[str, Any]:
        caps.require(Permission.TABLE_MANAGE)
        table = self.get(table_id)
        token = create_qr_token(table.id, table.qr_code_key)
        return {
            "token": token,
            "qr_code_url": f"{settings.public_app_url.rstrip('/')}/t/{token}",
            "table_number": table.number,
            "table_id": table.id,
        }

    def rotate_qr_key(self, caps: Capabilities, table_id: int) -> Table:
        """Invalidate every QR token issued so far for the table."""
        caps.require(Permission.TABLE_MANAGE)
        table = self.get(table_id)
        table.qr_code_key = generate_qr_code_key()
        self.db.commit()
        self.db.refresh(table)
        logger.info(f"QR key rotated for table {table.number}")
        return table

    def verify_qr_token(self, token: str) -> Table:
        payload = decode_qr_token(token)
        if payload is None:
            raise UnauthorizedError(INVALID_QR_MESSAGE)
        table = self.db.get(Table, payload["table_id"])
        if table is None or table.qr_code_key != payload["qr_code_key"]:
            raise UnauthorizedError(INVALID_QR_MESSAGE)
        return table

    def upcoming_reservations(self, table_id: int, hours: int = 24) -> List[Reservation]:
        self.get(table_id)
        now = utcnow()
        return (
            self.db.query(Reservation)
            .filter(
                Reservation.table_id == table_id,
                Reservation.status.in_((ReservationStatus.PENDING, ReservationStatus.CONFIRMED)),
                Reservation.reservation_time >= now - RESERVATION_WINDOW,
                Reservation.reservation_time <= now + timedelta(hours=hours),
            )
            .order_by(Reservation.reservation_time)
            .all()
        )
