"""Customer request routes for floor staff."""

from typing import Optional

from fastapi import APIRouter, status

from restopos.core.exceptions import ValidationError
from restopos.core.rbac import StaffCapabilities
from restopos.core.validators import PositiveIntId
from restopos.db.session import DbSession
from restopos.models.staff_action import ActionStatus
from restopos.schemas.action import ActionCreate, ActionStatusUpdate
from restopos.services.action_service import ActionService, serialize_action

router = APIRouter()


@router.get("/")
def list_actions(
    caps: StaffCapabilities,
    db: DbSession,
    status: Optional[ActionStatus] = None,
    session_id: Optional[int] = None,
):
    return [serialize_action(a) for a in ActionService(db).list(caps, status=status, session_id=session_id)]


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_action(body: ActionCreate, caps: StaffCapabilities, db: DbSession):
    if body.session_id is None:
        raise ValidationError("session_id is required")
    action = ActionService(db).create(caps, body.session_id, body.action_type, description=body.description)
    return serialize_action(action)


@router.patch("/{action_id}/status")
def update_action_status(action_id: PositiveIntId, body: ActionStatusUpdate, caps: StaffCapabilities, db: DbSession):
    return serialize_action(ActionService(db).update_status(caps, action_id, body.status))
