"""Kitchen display routes."""

from typing import Optional

from fastapi import APIRouter, Query

from restopos.core.rbac import StaffCapabilities
from restopos.core.validators import PositiveIntId
from restopos.db.session import DbSession
from restopos.models.order import OrderItemStatus, OrderType
from restopos.schemas.order import OrderItemStatusUpdate
from restopos.services.kitchen_service import KitchenService
from restopos.services.order_service import serialize_order_item

router = APIRouter()


@router.get("/queue")
def get_queue(
    caps: StaffCapabilities,
    db: DbSession,
    status: Optional[OrderItemStatus] = None,
    order_type: Optional[OrderType] = None,
    search: Optional[str] = None,
    include_completed: bool = False,
    limit: int = Query(50, ge=1, le=200),
):
    return KitchenService(db).get_queue(
        caps,
        status=status,
        order_type=order_type,
        search=search,
        include_completed=include_completed,
        limit=limit,
    )


@router.patch("/items/{item_id}/status")
def update_item_status(item_id: PositiveIntId, body: OrderItemStatusUpdate, caps: StaffCapabilities, db: DbSession):
    item = KitchenService(db).update_status(caps, item_id, body.status, reason=body.reason)
    return serialize_order_item(item)
