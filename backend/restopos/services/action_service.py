"""Guest requests to floor staff (call waiter, bill, water)."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from restopos.core.exceptions import ConflictError, NotFoundError
from restopos.core.rbac import Capabilities, Permission
from restopos.db.base import as_utc, utcnow
from restopos.models.notification import NotificationType
from restopos.models.staff_action import ActionStatus, ActionType, StaffAction
from restopos.models.table import SessionStatus, TableSession
from restopos.services.notification_service import NotificationService
from restopos.services.state_machines import ACTION_MACHINE

logger = logging.getLogger(__name__)

ACTION_LABELS = {
    ActionType.CALL_WAITER: "is calling a waiter",
    ActionType.REQUEST_BILL: "asked for the bill",
    ActionType.REQUEST_WATER: "asked for water",
    ActionType.OTHER: "has a request",
}


def serialize_action(action: StaffAction) -> Dict[str, Any]:
    return {
        "id": action.id,
        "session_id": action.session_id,
        "table_number": action.session.table.number if action.session else None,
        "action_type": action.action_type.value,
        "description": action.description,
        "status": action.status.value,
        "handled_by_id": action.handled_by_id,
        "created_at": as_utc(action.created_at).isoformat() if action.created_at else None,
        "completed_at": as_utc(action.completed_at).isoformat() if action.completed_at else None,
    }


class ActionService:
    def __init__(self, db: Session):
        self.db = db
        self.notifier = NotificationService(db)

    def get(self, caps: Capabilities, action_id: int) -> StaffAction:
        action = self.db.get(StaffAction, action_id)
        if action is None or (caps.table_session_id is not None and action.session_id != caps.table_session_id):
            raise NotFoundError("Action", action_id)
        return action

    def list(
        self,
        caps: Capabilities,
        status: Optional[ActionStatus] = None,
        session_id: Optional[int] = None,
    ) -> List[StaffAction]:
        if caps.table_session_id is not None:
            session_id = caps.table_session_id
        else:
            caps.require(Permission.ACTION_VIEW)
        query = self.db.query(StaffAction)
        if status is not None:
            query = query.filter(StaffAction.status == status)
        if session_id is not None:
            query = query.filter(StaffAction.session_id == session_id)
        return query.order_by(StaffAction.created_at.desc(), StaffAction.id.desc()).all()

    def create(
        self,
        caps: Capabilities,
        session_id: int,
        action_type: ActionType,
        description: Optional[str] = None,
    ) -> StaffAction:
        if caps.table_session_id is not None:
            session_id = caps.table_session_id
        if not caps.can(Permission.ACTION_CREATE):
            caps.require(Permission.ACTION_HANDLE)
        session = self.db.get(TableSession, session_id)
        if session is None:
            raise NotFoundError("Table session", session_id)
        if session.status != SessionStatus.OPEN:
            raise ConflictError(f"Table session {session_id} is closed")

        action = StaffAction(
            session_id=session.id,
            action_type=action_type,
            description=description,
            status=ActionStatus.PENDING,
        )
        self.db.add(action)
        self.db.flush()
        self.notifier.notify_roles(
            NotificationType.CUSTOMER_REQUEST,
            "Customer request",
            f"Table #{session.table.number} {ACTION_LABELS[action_type]}"
            + (f": {description}" if description else ""),
            data={"action_id": action.id, "session_id": session.id, "action_type": action_type.value},
        )
        self.db.commit()
        self.db.refresh(action)
        self.notifier.publish_pending()
        return action

    def update_status(self, caps: Capabilities, action_id: int, status: ActionStatus) -> StaffAction:
        caps.require(Permission.ACTION_HANDLE)
        action = self.get(caps, action_id)
        ACTION_MACHINE.ensure_transition(action.status, status)
        action.status = status
        action.handled_by_id = caps.user_id
        if status == ActionStatus.COMPLETED:
            action.completed_at = utcnow()
        self.db.commit()
        self.db.refresh(action)
        logger.info(f"Action {action.id} -> {status.value} by user {caps.user_id}")
        return action
