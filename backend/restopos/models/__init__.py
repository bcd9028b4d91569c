"""SQLAlchemy models."""

from restopos.models.user import User
from restopos.models.customer import Customer
from restopos.models.menu import Category, MenuItem
from restopos.models.table import Table, TableSession, TableStatus, SessionStatus
from restopos.models.order import Order, OrderItem, OrderType, OrderStatus, OrderItemStatus
from restopos.models.payment import (
    BankTransfer,
    Payment,
    PaymentMethod,
    PaymentStatus,
    TransferOutcome,
)
from restopos.models.reservation import Reservation, ReservationStatus
from restopos.models.notification import Notification, NotificationType
from restopos.models.staff_action import StaffAction, ActionType, ActionStatus

__all__ = [
    "User",
    "Customer",
    "Category",
    "MenuItem",
    "Table",
    "TableSession",
    "TableStatus",
    "SessionStatus",
    "Order",
    "OrderItem",
    "OrderType",
    "OrderStatus",
    "OrderItemStatus",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "BankTransfer",
    "TransferOutcome",
    "Reservation",
    "ReservationStatus",
    "Notification",
    "NotificationType",
    "StaffAction",
    "ActionType",
    "ActionStatus",
]
