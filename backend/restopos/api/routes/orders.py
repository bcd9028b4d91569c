"""Order routes for staff."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, status

from restopos.core.rbac import StaffCapabilities
from restopos.core.responses import paginated_response
from restopos.core.validators import LimitQuery, PositiveIntId, SkipQuery
from restopos.db.session import DbSession
from restopos.models.order import OrderStatus, OrderType
from restopos.schemas.order import (
    AddItemsRequest,
    OrderCancel,
    OrderCreate,
    OrderItemStatusUpdate,
    OrderItemUpdate,
    OrderStatusUpdate,
)
from restopos.services.order_service import OrderService, serialize_order, serialize_order_item

router = APIRouter()


@router.get("/")
def list_orders(
    caps: StaffCapabilities,
    db: DbSession,
    status: Optional[OrderStatus] = None,
    order_type: Optional[OrderType] = None,
    session_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: SkipQuery = 0,
    limit: LimitQuery = 50,
):
    items, total = OrderService(db).list(
        caps,
        status=status,
        order_type=order_type,
        session_id=session_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return paginated_response([serialize_order(o) for o in items], total, skip, limit)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_order(body: OrderCreate, caps: StaffCapabilities, db: DbSession):
    order = OrderService(db).create_order(
        caps,
        [i.to_request() for i in body.items],
        order_type=body.order_type,
        session_id=body.session_id,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        notes=body.notes,
        auto_confirm=body.auto_confirm,
    )
    return serialize_order(order)


@router.get("/{order_id}")
def get_order(order_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_order(OrderService(db).get(caps, order_id))


@router.get("/{order_id}/bill")
def get_order_bill(order_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return OrderService(db).get_bill(caps, order_id)


@router.post("/{order_id}/items")
def add_items(order_id: PositiveIntId, body: AddItemsRequest, caps: StaffCapabilities, db: DbSession):
    order = OrderService(db).add_items(caps, order_id, [i.to_request() for i in body.items])
    return serialize_order(order)


@router.patch("/{order_id}/items/{item_id}")
def update_item(
    order_id: PositiveIntId,
    item_id: PositiveIntId,
    body: OrderItemUpdate,
    caps: StaffCapabilities,
    db: DbSession,
):
    item = OrderService(db).update_item(caps, order_id, item_id, quantity=body.quantity, notes=body.notes)
    return serialize_order_item(item)


@router.delete("/{order_id}/items/{item_id}")
def remove_item(order_id: PositiveIntId, item_id: PositiveIntId, caps: StaffCapabilities, db: DbSession):
    return serialize_order(OrderService(db).remove_item(caps, order_id, item_id))


@router.patch("/items/{item_id}/status")
def update_item_status(item_id: PositiveIntId, body: OrderItemStatusUpdate, caps: StaffCapabilities, db: DbSession):
    item = OrderService(db).update_item_status(caps, item_id, body.status, reason=body.reason)
    return serialize_order_item(item)


@router.patch("/{order_id}/status")
def update_order_status(order_id: PositiveIntId, body: OrderStatusUpdate, caps: StaffCapabilities, db: DbSession):
    order = OrderService(db).update_order_status(caps, order_id, body.status, reason=body.reason)
    return serialize_order(order)


@router.post("/{order_id}/cancel")
def cancel_order(order_id: PositiveIntId, body: OrderCancel, caps: StaffCapabilities, db: DbSession):
    return serialize_order(OrderService(db).cancel_order(caps, order_id, body.reason))
