"""Bill projection shared by orders and table sessions.

Bills are computed at read time from the order lines; nothing here is stored.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from restopos.core.config import settings
from restopos.models.order import Order, OrderItem, OrderStatus

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def bill_lines(items: Iterable[OrderItem]) -> List[Dict[str, Any]]:
    return [
        {
            "name": item.item_name,
            "quantity": item.quantity,
            "unit_price": to_cents(item.unit_price),
            "total": to_cents(item.line_total),
        }
        for item in items
    ]


def bill_totals(subtotal: Decimal, tax_rate: Optional[Decimal] = None,
                discount: Decimal = Decimal("0")) -> Dict[str, Decimal]:
    rate = settings.tax_rate if tax_rate is None else tax_rate
    subtotal = to_cents(subtotal)
    tax = to_cents(subtotal * rate)
    discount = to_cents(discount)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "discount": discount,
        "total": subtotal + tax - discount,
    }


def billable_items(orders: Iterable[Order]) -> List[OrderItem]:
    """Non-cancelled lines of the non-cancelled orders."""
    return [
        item
        for order in orders
        if order.status != OrderStatus.CANCELLED
        for item in order.active_items
    ]
