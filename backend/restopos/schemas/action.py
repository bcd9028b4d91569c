"""Customer request (staff action) schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from restopos.models.staff_action import ActionStatus, ActionType


class ActionCreate(BaseModel):
    session_id: Optional[int] = Field(None, gt=0)
    action_type: ActionType
    description: Optional[str] = Field(None, max_length=500)


class ActionStatusUpdate(BaseModel):
    status: ActionStatus
