"""Staff notification inbox. Every query is scoped to the caller."""

from typing import Optional

from fastapi import APIRouter, Query, status

from restopos.core.rbac import CurrentUser
from restopos.core.responses import paged_response
from restopos.core.validators import PositiveIntId
from restopos.db.session import DbSession
from restopos.services.notification_service import NotificationService, serialize_notification

router = APIRouter()


@router.get("/")
def list_notifications(
    current_user: CurrentUser,
    db: DbSession,
    is_read: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    items, total = NotificationService(db).list(current_user.id, is_read=is_read, page=page, limit=limit)
    return paged_response([serialize_notification(n) for n in items], total, page, limit)


@router.get("/unread-count")
def unread_count(current_user: CurrentUser, db: DbSession):
    return {"count": NotificationService(db).unread_count(current_user.id)}


@router.post("/read-all")
def mark_all_as_read(current_user: CurrentUser, db: DbSession):
    service = NotificationService(db)
    updated = service.mark_all_as_read(current_user.id)
    service.publish_unread_count(current_user.id)
    return {"updated": updated}


@router.get("/{notification_id}")
def get_notification(notification_id: PositiveIntId, current_user: CurrentUser, db: DbSession):
    return serialize_notification(NotificationService(db).get(current_user.id, notification_id))


@router.patch("/{notification_id}/read")
def mark_as_read(notification_id: PositiveIntId, current_user: CurrentUser, db: DbSession):
    service = NotificationService(db)
    notification = service.mark_as_read(current_user.id, notification_id)
    service.publish_unread_count(current_user.id)
    return serialize_notification(notification)


@router.patch("/{notification_id}/unread")
def mark_as_unread(notification_id: PositiveIntId, current_user: CurrentUser, db: DbSession):
    service = NotificationService(db)
    notification = service.mark_as_unread(current_user.id, notification_id)
    service.publish_unread_count(current_user.id)
    return serialize_notification(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(notification_id: PositiveIntId, current_user: CurrentUser, db: DbSession):
    NotificationService(db).delete(current_user.id, notification_id)
