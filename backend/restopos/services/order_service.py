"""Order management: creation, line edits, status changes and bills.

Order and item statuses only move forward (see ``state_machines``). Item
changes pull the order along: once every active item is served the order is
SERVED, once all are ready it is READY, and as soon as one is started the order
is PREPARING. Order changes push down to the items in the same way.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, selectinload

from restopos.core.exceptions import ConflictError, NotFoundError, ValidationError
from restopos.core.rbac import Capabilities, Permission
from restopos.db.base import as_utc, utcnow
from restopos.models.menu import MenuItem
from restopos.models.notification import NotificationType
from restopos.models.payment import Payment, PaymentStatus
from restopos.models.order import (
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    OrderType,
)
from restopos.models.table import SessionStatus, TableSession
from restopos.models.user import User
from restopos.services.billing import bill_lines, bill_totals
from restopos.services.notification_service import NotificationService
from restopos.services.state_machines import ORDER_ITEM_MACHINE, ORDER_MACHINE

logger = logging.getLogger(__name__)

BILLED_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PAID)
STARTED_ITEM_STATUSES = frozenset({OrderItemStatus.PREPARING, OrderItemStatus.READY, OrderItemStatus.SERVED})
FINISHED_ITEM_STATUSES = frozenset({OrderItemStatus.READY, OrderItemStatus.SERVED})


@dataclass
class ItemRequest:
    """One requested line: menu item, quantity and an optional note."""

    menu_item_id: int
    quantity: int = 1
    notes: Optional[str] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "order_id": item.order_id,
        "menu_item_id": item.menu_item_id,
        "item_name": item.item_name,
        "unit_price": str(item.unit_price),
        "quantity": item.quantity,
        "line_total": str(item.line_total),
        "notes": item.notes,
        "status": item.status.value,
        "rejection_reason": item.rejection_reason,
        "created_at": _iso(item.created_at),
        "preparing_at": _iso(item.preparing_at),
        "ready_at": _iso(item.ready_at),
        "served_at": _iso(item.served_at),
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "code": order.code,
        "order_type": order.order_type.value,
        "session_id": order.session_id,
        "table_number": order.session.table.number if order.session else None,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "status": order.status.value,
        "notes": order.notes,
        "cancel_reason": order.cancel_reason,
        "confirmed_by_id": order.confirmed_by_id,
        "items": [serialize_order_item(i) for i in order.items],
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


class OrderService:
    """Service for orders and order items."""

    def __init__(self, db: Session):
        self.db = db
        self.notifier = NotificationService(db)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, caps: Capabilities, order_id: int) -> Order:
        caps.require(Permission.ORDER_VIEW)
        order = self.db.get(Order, order_id)
        # Guests only see their own session's orders
        if order is None or (caps.table_session_id is not None and order.session_id != caps.table_session_id):
            raise NotFoundError("Order", order_id)
        return order

    def _get_item(self, caps: Capabilities, order_id: int, item_id: int) -> Tuple[Order, OrderItem]:
        order = self.get(caps, order_id)
        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("Order item", item_id)
        return order, item

    def _ensure_bill_open(self, session_id: Optional[int] = None, order_id: Optional[int] = None) -> None:
        """Refuse line changes once a payment is pending or taken for the bill."""
        query = self.db.query(Payment.id).filter(Payment.status.in_(BILLED_PAYMENT_STATUSES))
        if session_id is not None:
            query = query.filter(Payment.session_id == session_id)
        else:
            query = query.filter(Payment.order_id == order_id)
        payment = query.first()
        if payment is not None:
            raise ConflictError(f"Payment {payment[0]} is already pending or paid for this bill")

    def _ensure_editable(self, order: Order) -> None:
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"Order {order.id} is {order.status.value}")
        if order.session is not None and order.session.status != SessionStatus.OPEN:
            raise ConflictError(f"Table session {order.session_id} is closed")
        if order.session_id is not None:
            self._ensure_bill_open(session_id=order.session_id)
        else:
            self._ensure_bill_open(order_id=order.id)

    def list(
        self,
        caps: Capabilities,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
        session_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Order], int]:
        caps.require(Permission.ORDER_VIEW)
        if caps.table_session_id is not None:
            session_id = caps.table_session_id
        query = self.db.query(Order).options(selectinload(Order.items))
        if status is not None:
            query = query.filter(Order.status == status)
        if order_type is not None:
            query = query.filter(Order.order_type == order_type)
        if session_id is not None:
            query = query.filter(Order.session_id == session_id)
        if start_date is not None:
            query = query.filter(Order.created_at >= as_utc(start_date))
        if end_date is not None:
            query = query.filter(Order.created_at <= as_utc(end_date))
        total = query.count()
        items = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit).all()
        return items, total

    # ------------------------------------------------------------------
    # Creation and line edits
    # ------------------------------------------------------------------

    def _build_items(self, requests: Sequence[ItemRequest]) -> List[OrderItem]:
        """Validate every requested line and snapshot name and price.

        Raises ValidationError naming all bad menu items; nothing is added to
        the session on failure.
        """
        if not requests:
            raise ValidationError("An order needs at least one item")
        for req in requests:
            if req.quantity < 1:
                raise ValidationError(f"Quantity for menu item {req.menu_item_id} must be at least 1")

        ids = {req.menu_item_id for req in requests}
        menu_items = {m.id: m for m in self.db.query(MenuItem).filter(MenuItem.id.in_(ids)).all()}
        missing = sorted(ids - menu_items.keys())
        unavailable = sorted(m.name for m in menu_items.values() if not m.is_available)
        if missing or unavailable:
            problems = []
            if missing:
                problems.append(f"unknown menu items: {', '.join(str(i) for i in missing)}")
            if unavailable:
                problems.append(f"unavailable: {', '.join(unavailable)}")
            raise ValidationError(
                f"Cannot order {'; '.join(problems)}",
                details={"missing": missing, "unavailable": unavailable},
            )

        return [
            OrderItem(
                menu_item_id=req.menu_item_id,
                item_name=menu_items[req.menu_item_id].name,
                unit_price=menu_items[req.menu_item_id].price,
                quantity=req.quantity,
                notes=req.notes,
                status=OrderItemStatus.PENDING,
            )
            for req in requests
        ]

    def create_order(
        self,
        caps: Capabilities,
        items: Sequence[ItemRequest],
        order_type: OrderType = OrderType.DINE_IN,
        session_id: Optional[int] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        notes: Optional[str] = None,
        auto_confirm: bool = False,
    ) -> Order:
        caps.require(Permission.ORDER_CREATE)
        if caps.table_session_id is not None:
            order_type = OrderType.DINE_IN
            session_id = caps.table_session_id
            auto_confirm = False
        if auto_confirm:
            caps.require(Permission.ORDER_UPDATE)

        session = None
        if order_type == OrderType.DINE_IN:
            if session_id is None:
                raise ValidationError("Dine-in orders need a table session")
            session = self.db.get(TableSession, session_id)
            if session is None:
                raise NotFoundError("Table session", session_id)
            if session.status != SessionStatus.OPEN:
                raise ConflictError(f"Table session {session_id} is closed")
            self._ensure_bill_open(session_id=session_id)
            customer_name = customer_phone = None
        else:
            if not customer_name or not customer_phone:
                raise ValidationError("Takeaway orders need customer_name and customer_phone")
            session_id = None

        order = Order(
            order_type=order_type,
            session_id=session_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=notes,
            status=OrderStatus.CONFIRMED if auto_confirm else OrderStatus.PENDING,
            confirmed_by_id=caps.user_id if auto_confirm else None,
        )
        order.items = self._build_items(items)
        self.db.add(order)
        self.db.flush()

        where = f"Table #{session.table.number}" if session else f"Takeaway for {customer_name}"
        if auto_confirm:
            self.notifier.notify_roles(
                NotificationType.ORDER_CONFIRMED,
                "Order confirmed",
                f"Order #{order.code} ({where}) confirmed with {len(order.items)} item(s)",
                data={"order_id": order.id, "session_id": session_id},
            )
        else:
            self.notifier.notify_roles(
                NotificationType.ORDER_NEW,
                "New order",
                f"Order #{order.code} ({where}) with {len(order.items)} item(s)",
                data={"order_id": order.id, "session_id": session_id},
            )
        self.db.commit()
        self.db.refresh(order)
        self.notifier.publish_pending()
        logger.info(f"Order {order.id} created ({order.order_type.value}, {order.status.value})")
        return order

    def add_items(self, caps: Capabilities, order_id: int, items: Sequence[ItemRequest]) -> Order:
        caps.require(Permission.ORDER_CREATE)
        order = self.get(caps, order_id)
        self._ensure_editable(order)
        order.items.extend(self._build_items(items))
        self.db.commit()
        self.db.refresh(order)
        return order

    def update_item(
        self,
        caps: Capabilities,
        order_id: int,
        item_id: int,
        quantity: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> OrderItem:
        caps.require(Permission.ORDER_UPDATE)
        order, item = self._get_item(caps, order_id, item_id)
        self._ensure_editable(order)
        if item.status in (OrderItemStatus.SERVED, OrderItemStatus.CANCELLED):
            raise ConflictError(f"Cannot modify a {item.status.value} item")
        if quantity is not None:
            if quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            item.quantity = quantity
        if notes is not None:
            item.notes = notes
        self.db.commit()
        self.db.refresh(item)
        return item

    def remove_item(self, caps: Capabilities, order_id: int, item_id: int) -> Order:
        caps.require(Permission.ORDER_UPDATE)
        order, item = self._get_item(caps, order_id, item_id)
        self._ensure_editable(order)
        if item.status == OrderItemStatus.SERVED:
            raise ConflictError("Cannot remove an item that was already served")
        if len(order.items) <= 1:
            raise ConflictError("Cannot remove the last item; cancel the order instead")
        order.items.remove(item)
        self.db.flush()
        self._advance_order(order)
        self.db.commit()
        self.db.refresh(order)
        self.notifier.publish_pending()
        return order

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def _set_item_status(
        self,
        item: OrderItem,
        status: OrderItemStatus,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        ORDER_ITEM_MACHINE.ensure_transition(item.status, status)
        now = now or utcnow()
        item.status = status
        if status == OrderItemStatus.PREPARING:
            item.preparing_at = item.preparing_at or now
        elif status == OrderItemStatus.READY:
            item.ready_at = now
        elif status == OrderItemStatus.SERVED:
            item.served_at = now
        elif status == OrderItemStatus.CANCELLED:
            item.rejection_reason = reason

    def update_item_status(
        self,
        caps: Capabilities,
        item_id: int,
        status: OrderItemStatus,
        reason: Optional[str] = None,
    ) -> OrderItem:
        if not caps.can(Permission.KITCHEN_UPDATE):
            caps.require(Permission.ORDER_UPDATE)
        item = self.db.get(OrderItem, item_id)
        if item is None:
            raise NotFoundError("Order item", item_id)
        order = item.order
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"Order {order.id} is {order.status.value}")

        self._set_item_status(item, status, reason)
        if status == OrderItemStatus.READY:
            self.notifier.notify_roles(
                NotificationType.ORDER_ITEM_READY,
                "Item ready",
                f"{item.quantity} x {item.item_name} for order #{order.code} is ready",
                data={"order_id": order.id, "item_id": item.id, "session_id": order.session_id},
            )
        self._advance_order(order)
        self.db.commit()
        self.db.refresh(item)
        self.notifier.publish_pending()
        return item

    def _advance_order(self, order: Order) -> None:
        """Move the order to the furthest status its items justify."""
        active = order.active_items
        if not active:
            target = OrderStatus.CANCELLED
        elif all(i.status == OrderItemStatus.SERVED for i in active):
            target = OrderStatus.SERVED
        elif all(i.status in FINISHED_ITEM_STATUSES for i in active):
            target = OrderStatus.READY
        elif any(i.status in STARTED_ITEM_STATUSES for i in active):
            target = OrderStatus.PREPARING
        else:
            return
        if target == order.status or not ORDER_MACHINE.can_transition(order.status, target):
            return
        order.status = target
        if target == OrderStatus.CANCELLED:
            order.cancel_reason = order.cancel_reason or "All items cancelled"
        logger.info(f"Order {order.id} advanced to {target.value}")
        if target == OrderStatus.READY:
            self._notify_order_ready(order)

    def _notify_order_ready(self, order: Order) -> None:
        self.notifier.notify_roles(
            NotificationType.ORDER_READY,
            "Order ready",
            f"Order #{order.code} is ready to serve",
            data={"order_id": order.id, "session_id": order.session_id},
        )

    def update_order_status(
        self,
        caps: Capabilities,
        order_id: int,
        status: OrderStatus,
        reason: Optional[str] = None,
    ) -> Order:
        caps.require(Permission.ORDER_CANCEL if status == OrderStatus.CANCELLED else Permission.ORDER_UPDATE)
        order = self.get(caps, order_id)
        ORDER_MACHINE.ensure_transition(order.status, status)
        active = order.active_items
        now = utcnow()

        if status == OrderStatus.CONFIRMED:
            if not active:
                raise ConflictError("Cannot confirm an order without items")
            order.confirmed_by_id = caps.user_id
        elif status == OrderStatus.PREPARING:
            self._cascade(active, (OrderItemStatus.PENDING,), OrderItemStatus.PREPARING, now)
        elif status == OrderStatus.READY:
            self._cascade(active, (OrderItemStatus.PENDING, OrderItemStatus.PREPARING), OrderItemStatus.READY, now)
        elif status == OrderStatus.SERVED:
            self._cascade(
                active,
                (OrderItemStatus.PENDING, OrderItemStatus.PREPARING, OrderItemStatus.READY),
                OrderItemStatus.SERVED,
                now,
            )
        elif status == OrderStatus.COMPLETED:
            unserved = [i.id for i in active if i.status != OrderItemStatus.SERVED]
            if unserved:
                raise ConflictError(
                    f"Order {order.id} still has {len(unserved)} unserved item(s)",
                    details={"item_ids": unserved},
                )
        elif status == OrderStatus.CANCELLED:
            if not reason or not reason.strip():
                raise ValidationError("A cancellation reason is required")
            self._cascade(
                order.items,
                (OrderItemStatus.PENDING, OrderItemStatus.PREPARING, OrderItemStatus.READY),
                OrderItemStatus.CANCELLED,
                now,
                reason=reason,
            )
            order.cancel_reason = reason

        order.status = status
        if status == OrderStatus.CONFIRMED:
            self.notifier.notify_roles(
                NotificationType.ORDER_CONFIRMED,
                "Order confirmed",
                f"Order #{order.code} confirmed",
                data={"order_id": order.id, "session_id": order.session_id},
            )
        elif status == OrderStatus.READY:
            self._notify_order_ready(order)
        self.db.commit()
        self.db.refresh(order)
        self.notifier.publish_pending()
        logger.info(f"Order {order.id} status -> {status.value}")
        return order

    def _cascade(
        self,
        items: Iterable[OrderItem],
        sources: Sequence[OrderItemStatus],
        target: OrderItemStatus,
        now: datetime,
        reason: Optional[str] = None,
    ) -> None:
        for item in items:
            if item.status in sources:
                self._set_item_status(item, target, reason, now)

    def cancel_order(self, caps: Capabilities, order_id: int, reason: str) -> Order:
        return self.update_order_status(caps, order_id, OrderStatus.CANCELLED, reason=reason)

    # ------------------------------------------------------------------
    # Bill
    # ------------------------------------------------------------------

    def get_bill(self, caps: Capabilities, order_id: int) -> Dict[str, Any]:
        order = self.get(caps, order_id)
        if order.status == OrderStatus.CANCELLED or not order.active_items:
            raise ConflictError(f"Order {order.id} has nothing to bill")

        confirmed_by = None
        if order.confirmed_by_id is not None:
            user = self.db.get(User, order.confirmed_by_id)
            confirmed_by = (user.name or user.username) if user else None

        items = order.active_items
        bill: Dict[str, Any] = {
            "order_id": order.id,
            "order_code": order.code,
            "order_type": order.order_type.value,
            "status": order.status.value,
            "created_at": _iso(order.created_at),
            "confirmed_by": confirmed_by,
            "items": bill_lines(items),
        }
        bill.update(bill_totals(sum((i.line_total for i in items), Decimal("0"))))
        if order.order_type == OrderType.DINE_IN and order.session is not None:
            bill.update({
                "session_id": order.session_id,
                "table_number": order.session.table.number,
                "customer_count": order.session.customer_count,
            })
        else:
            bill.update({
                "customer_name": order.customer_name,
                "customer_phone": order.customer_phone,
            })
        return bill
