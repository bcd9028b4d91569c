"""API routes."""

from fastapi import APIRouter

from restopos.api.routes import (
    actions,
    analytics,
    auth,
    categories,
    customer,
    customers,
    kitchen,
    menu_items,
    notifications,
    orders,
    payments,
    reservations,
    roles,
    sessions,
    tables,
    users,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(roles.router, prefix="/roles", tags=["roles"])
api_router.include_router(customers.router, prefix="/customers", tags=["customers"])
api_router.include_router(categories.router, prefix="/categories", tags=["menu"])
api_router.include_router(menu_items.router, prefix="/menu-items", tags=["menu"])
api_router.include_router(tables.router, prefix="/tables", tags=["tables"])
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(kitchen.router, prefix="/kitchen", tags=["kitchen"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(reservations.router, prefix="/reservations", tags=["reservations"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(actions.router, prefix="/actions", tags=["actions"])
api_router.include_router(customer.router, prefix="/customer", tags=["customer"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
