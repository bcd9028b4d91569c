"""Persisted staff notifications with live websocket delivery.

Domain services call ``notify_roles`` inside their own transaction, commit, and
then call ``publish_pending`` so nothing is pushed for a rolled-back change.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from restopos.core.exceptions import NotFoundError
from restopos.core.rbac import UserRole
from restopos.db.base import as_utc, utcnow
from restopos.models.notification import Notification, NotificationType
from restopos.models.user import User
from restopos.services.websocket_service import ws_manager, user_channel

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20

# Which roles receive each notification type
NOTIFICATION_ROLES: Dict[NotificationType, Tuple[UserRole, ...]] = {
    NotificationType.RESERVATION_NEW: (UserRole.ADMIN, UserRole.MANAGER, UserRole.WAITER),
    NotificationType.RESERVATION_CONFIRMED: (UserRole.ADMIN, UserRole.MANAGER, UserRole.WAITER),
    NotificationType.RESERVATION_CANCELLED: (UserRole.ADMIN, UserRole.MANAGER, UserRole.WAITER),
    NotificationType.ORDER_NEW: (UserRole.MANAGER, UserRole.WAITER, UserRole.KITCHEN),
    NotificationType.ORDER_CONFIRMED: (UserRole.MANAGER, UserRole.WAITER, UserRole.KITCHEN),
    NotificationType.ORDER_READY: (UserRole.MANAGER, UserRole.WAITER),
    NotificationType.ORDER_ITEM_READY: (UserRole.WAITER,),
    NotificationType.PAYMENT_SUCCESS: (UserRole.ADMIN, UserRole.MANAGER, UserRole.CASHIER),
    NotificationType.PAYMENT_FAILED: (UserRole.ADMIN, UserRole.MANAGER, UserRole.CASHIER),
    NotificationType.CUSTOMER_REQUEST: (UserRole.MANAGER, UserRole.WAITER),
    NotificationType.TABLE_SESSION_STARTED: (UserRole.MANAGER, UserRole.WAITER),
    NotificationType.SYSTEM_ALERT: (UserRole.ADMIN, UserRole.MANAGER),
}


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "metadata": notification.data,
        "created_at": as_utc(notification.created_at).isoformat() if notification.created_at else None,
    }


class NotificationService:
    """Create, query and deliver notifications."""

    def __init__(self, db: Session):
        self.db = db
        self._outbox: List[Tuple[int, Dict[str, Any]]] = []

    # ------------------------------------------------------------------
    # Creation and delivery
    # ------------------------------------------------------------------

    def notify_user(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id, type=type, title=title, message=message, data=data, is_read=False,
        )
        self.db.add(notification)
        self.db.flush()
        self._outbox.append((user_id, {"event": "notification", "data": serialize_notification(notification)}))
        return notification

    def notify_roles(
        self,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        roles: Optional[Iterable[UserRole]] = None,
    ) -> List[Notification]:
        """Create one notification per active user holding a subscribed role."""
        target_roles = list(roles) if roles is not None else list(NOTIFICATION_ROLES.get(type, ()))
        if not target_roles:
            return []
        user_ids = [
            row[0]
            for row in self.db.query(User.id)
            .filter(User.role.in_(target_roles), User.is_active.is_(True))
            .all()
        ]
        return [self.notify_user(uid, type, title, message, data) for uid in user_ids]

    def push_event(self, event: str, data: Dict[str, Any], roles: Iterable[UserRole]) -> None:
        """Queue a transient event (not persisted) for every active user in ``roles``."""
        user_ids = [
            row[0]
            for row in self.db.query(User.id)
            .filter(User.role.in_(list(roles)), User.is_active.is_(True))
            .all()
        ]
        for uid in user_ids:
            self._outbox.append((uid, {"event": event, "data": data}))

    def publish_pending(self) -> int:
        """Push queued events to connected users, followed by their unread counts.

        Call after the surrounding transaction committed. Returns the number of
        messages handed to the websocket layer.
        """
        outbox, self._outbox = self._outbox, []
        sent = 0
        notified_users = set()
        for user_id, message in outbox:
            ws_manager.publish(message, user_channel(user_id))
            sent += 1
            if message["event"] == "notification":
                notified_users.add(user_id)
        for user_id in notified_users:
            self.publish_unread_count(user_id)
        return sent

    def publish_unread_count(self, user_id: int) -> None:
        ws_manager.publish(
            {"event": "unreadCount", "data": {"count": self.unread_count(user_id)}},
            user_channel(user_id),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(
        self,
        user_id: int,
        is_read: Optional[bool] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Notification], int]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if is_read is not None:
            query = query.filter(Notification.is_read.is_(is_read))
        total = query.count()
        items = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def get(self, user_id: int, notification_id: int) -> Notification:
        notification = (
            self.db.query(Notification)
            .filter(Notification.id == notification_id, Notification.user_id == user_id)
            .first()
        )
        if notification is None:
            raise NotFoundError("Notification", notification_id)
        return notification

    def unread_count(self, user_id: int) -> int:
        return (
            self.db.query(func.count(Notification.id))
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .scalar()
        ) or 0

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    def mark_as_read(self, user_id: int, notification_id: int) -> Notification:
        return self._set_read(user_id, notification_id, True)

    def mark_as_unread(self, user_id: int, notification_id: int) -> Notification:
        return self._set_read(user_id, notification_id, False)

    def _set_read(self, user_id: int, notification_id: int, is_read: bool) -> Notification:
        notification = self.get(user_id, notification_id)
        if notification.is_read != is_read:
            notification.is_read = is_read
            self.db.commit()
            self.db.refresh(notification)
        return notification

    def mark_all_as_read(self, user_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.expire_all()
        return result.rowcount or 0

    def mark_old_as_read(self, hours: int = 24) -> int:
        """Mark notifications older than ``hours`` as read, for every user."""
        cutoff = utcnow() - timedelta(hours=hours)
        result = self.db.execute(
            update(Notification)
            .where(Notification.is_read.is_(False), Notification.created_at < cutoff)
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.info(f"Marked {result.rowcount} notifications older than {hours}h as read")
        return result.rowcount or 0

    def delete(self, user_id: int, notification_id: int) -> None:
        notification = self.get(user_id, notification_id)
        self.db.delete(notification)
        self.db.commit()
