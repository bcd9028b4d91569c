# Services module

from restopos.services.action_service import ActionService
from restopos.services.customer_service import CustomerService
from restopos.services.kitchen_service import KitchenService
from restopos.services.media_service import MediaService
from restopos.services.menu_service import CategoryService, MenuItemService
from restopos.services.notification_service import NotificationService
from restopos.services.order_service import ItemRequest, OrderService
from restopos.services.payment_service import PaymentService
from restopos.services.reservation_service import ReservationService, ReservationSweeper
from restopos.services.session_service import SessionService
from restopos.services.table_service import TableService
from restopos.services.user_service import AuthService, UserService

__all__ = [
    "ActionService",
    "AuthService",
    "CategoryService",
    "CustomerService",
    "ItemRequest",
    "KitchenService",
    "MediaService",
    "MenuItemService",
    "NotificationService",
    "OrderService",
    "PaymentService",
    "ReservationService",
    "ReservationSweeper",
    "SessionService",
    "TableService",
    "UserService",
]
