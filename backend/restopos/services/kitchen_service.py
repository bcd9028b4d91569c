"""Kitchen display queue."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, contains_eager

from restopos.core.exceptions import NotFoundError, ValidationError
from restopos.core.rbac import Capabilities, Permission
from restopos.db.base import as_utc, utcnow
from restopos.models.order import Order, OrderItem, OrderItemStatus, OrderStatus, OrderType
from restopos.models.table import Table, TableSession
from restopos.services.order_service import OrderService
from restopos.services.state_machines import KITCHEN_MACHINE

logger = logging.getLogger(__name__)

OPEN_ITEM_STATUSES = (OrderItemStatus.PENDING, OrderItemStatus.PREPARING, OrderItemStatus.READY)
HIDDEN_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.COMPLETED)


def table_label(order: Order) -> str:
    if order.order_type == OrderType.TAKEAWAY:
        return f"Takeaway · {order.customer_name}" if order.customer_name else "Takeaway"
    if order.session is not None:
        return f"Table {order.session.table.number}"
    return "Dine-in"


def serialize_kitchen_item(item: OrderItem) -> Dict[str, Any]:
    order = item.order
    return {
        "id": item.id,
        "order_id": order.id,
        "order_code": f"#{order.code}",
        "quantity": item.quantity,
        "item_name": item.item_name,
        "status": item.status.value,
        "notes": item.notes,
        "preparing_at": as_utc(item.preparing_at).isoformat() if item.preparing_at else None,
        "ready_at": as_utc(item.ready_at).isoformat() if item.ready_at else None,
        "order_placed_at": as_utc(order.created_at).isoformat(),
        "table_label": table_label(order),
        "order_type": order.order_type.value,
    }


class KitchenService:
    """What the kitchen has to cook, oldest first."""

    def __init__(self, db: Session):
        self.db = db

    def _base_query(self, order_type: Optional[OrderType], search: Optional[str], *entities):
        query = (
            self.db.query(*(entities or (OrderItem,)))
            .select_from(OrderItem)
            .join(OrderItem.order)
            .outerjoin(Order.session)
            .outerjoin(TableSession.table)
            .filter(Order.status.notin_(HIDDEN_ORDER_STATUSES))
        )
        if order_type is not None:
            query = query.filter(Order.order_type == order_type)
        if search and search.strip():
            term = search.strip()
            pattern = f"%{term}%"
            filters = [
                OrderItem.item_name.ilike(pattern),
                OrderItem.notes.ilike(pattern),
                Order.customer_name.ilike(pattern),
            ]
            if term.isdigit():
                filters.append(Table.number == int(term))
            query = query.filter(or_(*filters))
        return query

    def get_queue(
        self,
        caps: Capabilities,
        status: Optional[OrderItemStatus] = None,
        order_type: Optional[OrderType] = None,
        search: Optional[str] = None,
        include_completed: bool = False,
        limit: int = 50,
    ) -> Dict[str, Any]:
        caps.require(Permission.KITCHEN_VIEW)
        if limit < 1 or limit > 200:
            raise ValidationError("limit must be between 1 and 200")

        if status is not None:
            statuses: List[OrderItemStatus] = [status]
        elif include_completed:
            statuses = list(OrderItemStatus)
        else:
            statuses = list(OPEN_ITEM_STATUSES)

        items = (
            self._base_query(order_type, search)
            .options(contains_eager(OrderItem.order))
            .filter(OrderItem.status.in_(statuses))
            .order_by(OrderItem.created_at, OrderItem.id)
            .limit(limit)
            .all()
        )
        return {
            "items": [serialize_kitchen_item(i) for i in items],
            "stats": self.stats(order_type, search),
            "last_updated": utcnow().isoformat(),
        }

    def stats(self, order_type: Optional[OrderType] = None, search: Optional[str] = None) -> Dict[str, Any]:
        counts = dict(
            self._base_query(order_type, search, OrderItem.status, func.count(OrderItem.id))
            .group_by(OrderItem.status)
            .all()
        )
        pending = counts.get(OrderItemStatus.PENDING, 0)
        preparing = counts.get(OrderItemStatus.PREPARING, 0)
        ready = counts.get(OrderItemStatus.READY, 0)

        timed = (
            self._base_query(order_type, search, OrderItem.preparing_at, OrderItem.ready_at)
            .filter(OrderItem.preparing_at.isnot(None), OrderItem.ready_at.isnot(None))
            .all()
        )
        avg_prep_minutes = None
        if timed:
            total_seconds = sum((as_utc(r) - as_utc(p)).total_seconds() for p, r in timed)
            avg_prep_minutes = round(total_seconds / len(timed) / 60, 1)

        return {
            "pending": pending,
            "preparing": preparing,
            "ready": ready,
            "total": pending + preparing + ready,
            "avg_prep_minutes": avg_prep_minutes,
        }

    def update_status(
        self,
        caps: Capabilities,
        item_id: int,
        status: OrderItemStatus,
        reason: Optional[str] = None,
    ) -> OrderItem:
        """Step an item one stage along the kitchen line."""
        caps.require(Permission.KITCHEN_UPDATE)
        item = self.db.get(OrderItem, item_id)
        if item is None:
            raise NotFoundError("Order item", item_id)
        KITCHEN_MACHINE.ensure_transition(item.status, status)
        if status == OrderItemStatus.CANCELLED:
            if not reason or not reason.strip():
                raise ValidationError("A rejection reason is required when cancelling an item")
            reason = reason.strip()
        return OrderService(self.db).update_item_status(caps, item_id, status, reason)
