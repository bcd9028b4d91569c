"""Table session lifecycle.

A session is opened either by a guest redeeming the table's QR token or by
staff, and is closed by staff or by settling its payment. The plaintext secret
is returned once, from the call that opened the session.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restopos.core.config import settings
from restopos.core.exceptions import ConflictError, NotFoundError, UnauthorizedError
from restopos.core.rbac import Capabilities, Permission
from restopos.core.security import generate_session_secret, hash_session_secret, verify_session_secret
from restopos.db.base import as_utc, utcnow
from restopos.models.notification import NotificationType
from restopos.models.order import SETTLED_ORDER_STATUSES
from restopos.models.table import SessionStatus, Table, TableSession, TableStatus
from restopos.services.billing import bill_lines, bill_totals, billable_items
from restopos.services.notification_service import NotificationService
from restopos.services.state_machines import SESSION_MACHINE
from restopos.services.table_service import TableService, serialize_table

logger = logging.getLogger(__name__)

INVALID_SESSION_MESSAGE = "Invalid or expired table session"


def serialize_session(session: TableSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "table_id": session.table_id,
        "table_number": session.table.number if session.table else None,
        "customer_count": session.customer_count,
        "notes": session.notes,
        "status": session.status.value,
        "started_at": as_utc(session.started_at).isoformat(),
        "expires_at": as_utc(session.expires_at).isoformat(),
        "closed_at": as_utc(session.closed_at).isoformat() if session.closed_at else None,
    }


def close_table_session(db: Session, session: TableSession, now: Optional[datetime] = None) -> None:
    """Close ``session`` and free its table. The caller owns the commit."""
    SESSION_MACHINE.ensure_transition(session.status, SessionStatus.CLOSED)
    session.status = SessionStatus.CLOSED
    session.closed_at = now or utcnow()
    table = session.table
    if table.status == TableStatus.OCCUPIED:
        table.status = TableStatus.AVAILABLE
    logger.info(f"Session {session.id} closed, table {table.number} released")


class SessionService:
    """Service for table sessions."""

    def __init__(self, db: Session):
        self.db = db
        self.notifier = NotificationService(db)

    def get(self, session_id: int) -> TableSession:
        session = self.db.get(TableSession, session_id)
        if session is None:
            raise NotFoundError("Table session", session_id)
        return session

    def list(
        self,
        status: Optional[SessionStatus] = None,
        table_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[TableSession], int]:
        query = self.db.query(TableSession)
        if status is not None:
            query = query.filter(TableSession.status == status)
        if table_id is not None:
            query = query.filter(TableSession.table_id == table_id)
        total = query.count()
        items = query.order_by(TableSession.started_at.desc(), TableSession.id.desc()).offset(skip).limit(limit).all()
        return items, total

    def authenticate(self, session_id: int, secret: str) -> TableSession:
        """Resolve a guest's session from its id and secret.

        Every failure is reported the same way so callers cannot probe which
        sessions exist.
        """
        session = self.db.get(TableSession, session_id)
        if session is None or not verify_session_secret(secret, session.secret_hash):
            raise UnauthorizedError(INVALID_SESSION_MESSAGE)
        if session.status != SessionStatus.OPEN or session.is_expired():
            raise UnauthorizedError(INVALID_SESSION_MESSAGE)
        return session

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def init(self, token: str, customer_count: int = 1, notes: Optional[str] = None) -> Dict[str, Any]:
        """Open a session by redeeming a table QR token."""
        table = TableService(self.db).verify_qr_token(token)
        return self._open(table, customer_count, notes)

    def create(
        self,
        caps: Capabilities,
        table_id: int,
        customer_count: int = 1,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        caps.require(Permission.SESSION_MANAGE)
        table = TableService(self.db).get(table_id)
        return self._open(table, customer_count, notes)

    def _open(self, table: Table, customer_count: int, notes: Optional[str]) -> Dict[str, Any]:
        number = table.number
        if table.status == TableStatus.OUT_OF_SERVICE:
            raise ConflictError(f"Table #{table.number} is out of service")
        if TableService(self.db).has_open_session(table.id):
            raise ConflictError(f"Table #{table.number} already has an open session")

        secret = generate_session_secret()
        now = utcnow()
        session = TableSession(
            table_id=table.id,
            secret_hash=hash_session_secret(secret),
            customer_count=customer_count,
            notes=notes,
            status=SessionStatus.OPEN,
            started_at=now,
            expires_at=now + timedelta(minutes=settings.session_expire_minutes),
        )
        self.db.add(session)
        table.status = TableStatus.OCCUPIED
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Concurrent session open on table {number}: {e.orig}")
            raise ConflictError(f"Table #{number} already has an open session") from e

        self.notifier.notify_roles(
            NotificationType.TABLE_SESSION_STARTED,
            "Table session started",
            f"Table #{table.number} opened a session for {customer_count} guest(s)",
            data={"session_id": session.id, "table_id": table.id},
        )
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(f"Table #{number} already has an open session") from e
        self.db.refresh(session)
        self.notifier.publish_pending()
        logger.info(f"Session {session.id} opened on table {table.number}")

        return {
            "session_id": session.id,
            "session_secret": secret,
            "table": serialize_table(table),
            "expires_at": as_utc(session.expires_at).isoformat(),
        }

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update(
        self,
        caps: Capabilities,
        session_id: int,
        customer_count: Optional[int] = None,
        notes: Optional[str] = None,
        status: Optional[SessionStatus] = None,
    ) -> TableSession:
        caps.require(Permission.SESSION_MANAGE)
        session = self.get(session_id)
        if session.status == SessionStatus.CLOSED:
            raise ConflictError(f"Session {session.id} is closed")
        if customer_count is not None:
            session.customer_count = customer_count
        if status == SessionStatus.CLOSED:
            return self.close(caps, session_id, notes=notes)
        if notes is not None:
            session.notes = notes
        self.db.commit()
        self.db.refresh(session)
        return session

    def close(self, caps: Capabilities, session_id: int, notes: Optional[str] = None) -> TableSession:
        caps.require(Permission.SESSION_MANAGE)
        session = self.get(session_id)
        if session.status == SessionStatus.CLOSED:
            raise ConflictError(f"Session {session.id} is already closed")

        open_orders = [o for o in session.orders if o.status not in SETTLED_ORDER_STATUSES]
        if open_orders:
            raise ConflictError(
                f"Session {session.id} has {len(open_orders)} unfinished order(s)",
                details={"order_ids": [o.id for o in open_orders]},
            )
        if notes is not None:
            session.notes = notes
        close_table_session(self.db, session)
        self.db.commit()
        self.db.refresh(session)
        return session

    # ------------------------------------------------------------------
    # Bill
    # ------------------------------------------------------------------

    def get_bill(self, session_id: int) -> Dict[str, Any]:
        session = self.get(session_id)
        items = billable_items(session.orders)
        if not items:
            raise ConflictError(f"Session {session.id} has nothing to bill")
        subtotal = sum((i.line_total for i in items), Decimal("0"))
        bill = {
            "session_id": session.id,
            "table_number": session.table.number,
            "customer_count": session.customer_count,
            "status": session.status.value,
            "order_ids": [o.id for o in session.orders],
            "items": bill_lines(items),
        }
        bill.update(bill_totals(subtotal))
        return bill
