"""Reservations and the periodic jobs that keep table statuses in sync with them.

A reservation holds its table for a two-hour window on either side of the
booked time. Only PENDING and CONFIRMED reservations hold a slot.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from restopos.core.exceptions import ConflictError, NotFoundError, ValidationError
from restopos.core.rbac import Capabilities, Permission
from restopos.db.base import as_utc, utcnow
from restopos.models.customer import Customer
from restopos.models.notification import NotificationType
from restopos.models.reservation import ACTIVE_RESERVATION_STATUSES, Reservation, ReservationStatus
from restopos.models.table import SessionStatus, Table, TableSession, TableStatus
from restopos.services.customer_service import CustomerService
from restopos.services.notification_service import NotificationService
from restopos.services.state_machines import RESERVATION_MACHINE

logger = logging.getLogger(__name__)

RESERVATION_WINDOW = timedelta(hours=2)
NO_SHOW_GRACE = timedelta(minutes=30)


def find_conflicting_reservation(
    db: Session,
    table_id: int,
    at: datetime,
    statuses: Sequence[ReservationStatus] = ACTIVE_RESERVATION_STATUSES,
    exclude_id: Optional[int] = None,
) -> Optional[Reservation]:
    """First reservation for ``table_id`` within the window around ``at``."""
    at = as_utc(at)
    query = db.query(Reservation).filter(
        Reservation.table_id == table_id,
        Reservation.status.in_(list(statuses)),
        Reservation.reservation_time > at - RESERVATION_WINDOW,
        Reservation.reservation_time < at + RESERVATION_WINDOW,
    )
    if exclude_id is not None:
        query = query.filter(Reservation.id != exclude_id)
    return query.order_by(Reservation.reservation_time).first()


def serialize_reservation(reservation: Reservation) -> Dict[str, Any]:
    customer = reservation.customer
    return {
        "id": reservation.id,
        "status": reservation.status.value,
        "party_size": reservation.party_size,
        "reservation_time": as_utc(reservation.reservation_time).isoformat(),
        "notes": reservation.notes,
        "table_id": reservation.table_id,
        "table_number": reservation.table.number if reservation.table else None,
        "customer": {
            "id": customer.id,
            "name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
        } if customer else None,
        "created_at": as_utc(reservation.created_at).isoformat() if reservation.created_at else None,
    }


class ReservationService:
    """Service for table reservations."""

    def __init__(self, db: Session):
        self.db = db
        self.notifier = NotificationService(db)

    def get(self, reservation_id: int) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def list(
        self,
        status: Optional[ReservationStatus] = None,
        date: Optional[datetime] = None,
        table_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Reservation], int]:
        query = self.db.query(Reservation)
        if status is not None:
            query = query.filter(Reservation.status == status)
        if table_id is not None:
            query = query.filter(Reservation.table_id == table_id)
        if date is not None:
            day_start = as_utc(date).replace(hour=0, minute=0, second=0, microsecond=0)
            query = query.filter(
                Reservation.reservation_time >= day_start,
                Reservation.reservation_time < day_start + timedelta(days=1),
            )
        total = query.count()
        items = query.order_by(Reservation.reservation_time, Reservation.id).offset(skip).limit(limit).all()
        return items, total

    def _check_slot(
        self,
        table: Table,
        party_size: int,
        at: datetime,
        phone: str,
        exclude_id: Optional[int] = None,
    ) -> None:
        if at <= utcnow():
            raise ValidationError("Reservation time must be in the future")
        if table.capacity < party_size:
            raise ValidationError(
                f"Table #{table.number} seats {table.capacity}, party of {party_size} does not fit"
            )
        if table.status == TableStatus.OUT_OF_SERVICE:
            raise ConflictError(f"Table #{table.number} is out of service")

        day_start = at.replace(hour=0, minute=0, second=0, microsecond=0)
        same_day = (
            self.db.query(Reservation.id)
            .join(Customer, Customer.id == Reservation.customer_id)
            .filter(
                Customer.phone == phone,
                Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
                Reservation.reservation_time >= day_start,
                Reservation.reservation_time < day_start + timedelta(days=1),
            )
        )
        if exclude_id is not None:
            same_day = same_day.filter(Reservation.id != exclude_id)
        if same_day.first() is not None:
            raise ConflictError(f"Phone {phone} already has a reservation on {day_start.date().isoformat()}")

        clash = find_conflicting_reservation(self.db, table.id, at, exclude_id=exclude_id)
        if clash is not None:
            raise ConflictError(
                f"Table #{table.number} is already reserved around "
                f"{as_utc(clash.reservation_time).isoformat()}"
            )

    def _table(self, table_id: int) -> Table:
        table = self.db.get(Table, table_id)
        if table is None:
            raise NotFoundError("Table", table_id)
        return table

    def create(
        self,
        caps: Capabilities,
        customer_name: str,
        customer_phone: str,
        table_id: int,
        party_size: int,
        reservation_time: datetime,
        customer_email: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Reservation:
        caps.require(Permission.RESERVATION_MANAGE)
        at = as_utc(reservation_time)
        table = self._table(table_id)
        self._check_slot(table, party_size, at, customer_phone)

        customer = CustomerService(self.db).find_or_create(customer_name, customer_phone, customer_email)
        reservation = Reservation(
            customer_id=customer.id,
            table_id=table.id,
            party_size=party_size,
            reservation_time=at,
            notes=notes,
            status=ReservationStatus.PENDING,
        )
        self.db.add(reservation)
        self.db.flush()
        self.notifier.notify_roles(
            NotificationType.RESERVATION_NEW,
            "New reservation",
            f"{customer.name} booked table #{table.number} for {party_size} at {at.strftime('%Y-%m-%d %H:%M')}",
            data={"reservation_id": reservation.id, "table_id": table.id},
        )
        self.db.commit()
        self.db.refresh(reservation)
        self.notifier.publish_pending()
        logger.info(f"Reservation {reservation.id} created for table {table.number}")
        return reservation

    def update(
        self,
        caps: Capabilities,
        reservation_id: int,
        table_id: Optional[int] = None,
        party_size: Optional[int] = None,
        reservation_time: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> Reservation:
        caps.require(Permission.RESERVATION_MANAGE)
        reservation = self.get(reservation_id)
        if reservation.status not in ACTIVE_RESERVATION_STATUSES:
            raise ConflictError(f"Cannot modify a {reservation.status.value} reservation")

        table = self._table(table_id) if table_id is not None else reservation.table
        size = party_size if party_size is not None else reservation.party_size
        at = as_utc(reservation_time) if reservation_time is not None else as_utc(reservation.reservation_time)
        if table_id is not None or party_size is not None or reservation_time is not None:
            self._check_slot(table, size, at, reservation.customer.phone, exclude_id=reservation.id)

        reservation.table_id = table.id
        reservation.party_size = size
        reservation.reservation_time = at
        if notes is not None:
            reservation.notes = notes
        self.db.commit()
        self.db.refresh(reservation)
        return reservation

    def _transition(self, reservation: Reservation, target: ReservationStatus) -> None:
        RESERVATION_MACHINE.ensure_transition(reservation.status, target)
        reservation.status = target

    def confirm(self, caps: Capabilities, reservation_id: int) -> Reservation:
        caps.require(Permission.RESERVATION_MANAGE)
        reservation = self.get(reservation_id)
        if reservation.status != ReservationStatus.PENDING:
            raise ConflictError(f"Only PENDING reservations can be confirmed (is {reservation.status.value})")
        self._transition(reservation, ReservationStatus.CONFIRMED)

        table = reservation.table
        at = as_utc(reservation.reservation_time)
        if abs(at - utcnow()) <= RESERVATION_WINDOW and table.status == TableStatus.AVAILABLE:
            table.status = TableStatus.RESERVED

        self.notifier.notify_roles(
            NotificationType.RESERVATION_CONFIRMED,
            "Reservation confirmed",
            f"Reservation #{reservation.id} for table #{table.number} confirmed",
            data={"reservation_id": reservation.id, "table_id": table.id},
        )
        self.db.commit()
        self.db.refresh(reservation)
        self.notifier.publish_pending()
        return reservation

    def cancel(self, caps: Capabilities, reservation_id: int, reason: Optional[str] = None) -> Reservation:
        caps.require(Permission.RESERVATION_MANAGE)
        reservation = self.get(reservation_id)
        self._transition(reservation, ReservationStatus.CANCELLED)
        if reason:
            reservation.notes = f"{reservation.notes}\nCancelled: {reason}" if reservation.notes else f"Cancelled: {reason}"
        self.db.flush()
        release_table_if_unreserved(self.db, reservation.table_id)
        self.notifier.notify_roles(
            NotificationType.RESERVATION_CANCELLED,
            "Reservation cancelled",
            f"Reservation #{reservation.id} for table #{reservation.table.number} was cancelled",
            data={"reservation_id": reservation.id, "table_id": reservation.table_id},
        )
        self.db.commit()
        self.db.refresh(reservation)
        self.notifier.publish_pending()
        return reservation

    def complete(self, caps: Capabilities, reservation_id: int) -> Reservation:
        """Guests arrived and were seated."""
        caps.require(Permission.RESERVATION_MANAGE)
        reservation = self.get(reservation_id)
        self._transition(reservation, ReservationStatus.COMPLETED)
        self.db.commit()
        self.db.refresh(reservation)
        return reservation

    def delete(self, caps: Capabilities, reservation_id: int) -> None:
        caps.require(Permission.RESERVATION_MANAGE)
        reservation = self.get(reservation_id)
        table_id = reservation.table_id
        self.db.delete(reservation)
        self.db.flush()
        release_table_if_unreserved(self.db, table_id)
        self.db.commit()

    def available_tables(self, at: datetime, party_size: int) -> List[Table]:
        """Tables that can seat ``party_size`` with no active reservation near ``at``."""
        at = as_utc(at)
        candidates = (
            self.db.query(Table)
            .filter(
                Table.capacity >= party_size,
                Table.status.in_((TableStatus.AVAILABLE, TableStatus.RESERVED)),
            )
            .order_by(Table.capacity, Table.number)
            .all()
        )
        return [t for t in candidates if find_conflicting_reservation(self.db, t.id, at) is None]


def _has_open_session(db: Session, table_id: int) -> bool:
    return (
        db.query(TableSession.id)
        .filter(TableSession.table_id == table_id, TableSession.status == SessionStatus.OPEN)
        .first()
        is not None
    )


def release_table_if_unreserved(db: Session, table_id: int) -> bool:
    """Flip a RESERVED table back to AVAILABLE when nothing holds it any more."""
    table = db.get(Table, table_id)
    if table is None or table.status != TableStatus.RESERVED:
        return False
    if find_conflicting_reservation(db, table_id, utcnow(), statuses=(ReservationStatus.CONFIRMED,)):
        return False
    if _has_open_session(db, table_id):
        return False
    table.status = TableStatus.AVAILABLE
    logger.info(f"Released table {table.number} to AVAILABLE")
    return True


class ReservationSweeper:
    """Periodic maintenance of reservations and reserved tables."""

    def __init__(self, db: Session):
        self.db = db

    def release_expired_reservations(self) -> Dict[str, Any]:
        """Free tables whose confirmed reservation window has passed."""
        cutoff = utcnow() - RESERVATION_WINDOW
        expired = (
            self.db.query(Reservation)
            .filter(Reservation.status == ReservationStatus.CONFIRMED, Reservation.reservation_time < cutoff)
            .all()
        )
        released = 0
        for table_id in {r.table_id for r in expired}:
            if release_table_if_unreserved(self.db, table_id):
                released += 1
        self.db.commit()
        return {"expired": len(expired), "tables_released": released}

    def mark_no_shows(self) -> Dict[str, Any]:
        """Confirmed reservations 30 minutes past their time become NO_SHOW."""
        cutoff = utcnow() - NO_SHOW_GRACE
        overdue = (
            self.db.query(Reservation)
            .filter(Reservation.status == ReservationStatus.CONFIRMED, Reservation.reservation_time < cutoff)
            .all()
        )
        for reservation in overdue:
            RESERVATION_MACHINE.ensure_transition(reservation.status, ReservationStatus.NO_SHOW)
            reservation.status = ReservationStatus.NO_SHOW
        self.db.flush()
        for table_id in {r.table_id for r in overdue}:
            release_table_if_unreserved(self.db, table_id)
        self.db.commit()
        if overdue:
            logger.info(f"Marked {len(overdue)} reservations as NO_SHOW")
        return {"no_shows": len(overdue)}

    def sync_table_statuses(self) -> Dict[str, Any]:
        """Mark tables RESERVED around confirmed reservations and release the rest."""
        now = utcnow()
        upcoming = (
            self.db.query(Reservation)
            .filter(
                Reservation.status == ReservationStatus.CONFIRMED,
                Reservation.reservation_time >= now - RESERVATION_WINDOW,
                Reservation.reservation_time <= now + RESERVATION_WINDOW,
            )
            .all()
        )
        reserved = 0
        for reservation in upcoming:
            table = reservation.table
            if table.status == TableStatus.AVAILABLE and not _has_open_session(self.db, table.id):
                table.status = TableStatus.RESERVED
                reserved += 1
                logger.info(f"Set table {table.number} to RESERVED")
        self.db.flush()

        released = 0
        for table in self.db.query(Table).filter(Table.status == TableStatus.RESERVED).all():
            if release_table_if_unreserved(self.db, table.id):
                released += 1
        self.db.commit()
        return {"reserved": reserved, "released": released}


def _run_sweep(job: str) -> Dict[str, Any]:
    from restopos.db.session import SessionLocal
    db = SessionLocal()
    try:
        return getattr(ReservationSweeper(db), job)()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def run_release_expired_reservations() -> Dict[str, Any]:
    """Standalone entry point for the scheduler."""
    return _run_sweep("release_expired_reservations")


def run_mark_no_shows() -> Dict[str, Any]:
    return _run_sweep("mark_no_shows")


def run_sync_table_statuses() -> Dict[str, Any]:
    return _run_sweep("sync_table_statuses")
