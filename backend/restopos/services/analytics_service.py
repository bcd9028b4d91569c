"""Sales analytics over settled payments.

Revenue is counted from PAID payments by ``paid_at``. A dine-in payment covers
every order of its table session, a takeaway payment covers its one order.
Refunded and failed payments are left out. Hour and day buckets are computed
in UTC.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from restopos.core.exceptions import ValidationError
from restopos.core.rbac import Capabilities, Permission
from restopos.db.base import as_utc, utcnow
from restopos.models.menu import Category, MenuItem
from restopos.models.order import Order, OrderItem, OrderItemStatus
from restopos.models.payment import Payment, PaymentStatus
from restopos.models.table import SessionStatus, Table, TableSession

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30
CENTS = Decimal("0.01")
ZERO = Decimal("0")

# (label, first hour, last hour) in UTC, anything else is late night
DAY_PARTS: Tuple[Tuple[str, int, int], ...] = (
    ("Breakfast (6-11)", 6, 11),
    ("Lunch (12-14)", 12, 14),
    ("Afternoon (15-17)", 15, 17),
    ("Dinner (18-22)", 18, 22),
)
LATE_NIGHT = "Late Night (23-5)"


def _money(value: Any) -> str:
    return str(Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP))


def _percent(part: Decimal, whole: Decimal) -> float:
    if not whole:
        return 0.0
    return float((Decimal(part) / Decimal(whole) * 100).quantize(CENTS, rounding=ROUND_HALF_UP))


def _average(total: Decimal, count: int) -> str:
    return _money(Decimal(total) / count) if count else _money(ZERO)


def day_part(hour: int) -> str:
    for label, first, last in DAY_PARTS:
        if first <= hour <= last:
            return label
    return LATE_NIGHT


@dataclass
class Period:
    """Inclusive reporting window in UTC."""

    start: datetime
    end: datetime

    @classmethod
    def resolve(cls, start: Optional[datetime] = None, end: Optional[datetime] = None) -> "Period":
        end = as_utc(end) if end else utcnow()
        start = as_utc(start) if start else end - timedelta(days=DEFAULT_PERIOD_DAYS)
        if start > end:
            raise ValidationError("start_date must not be after end_date")
        return cls(start, end)

    def previous(self) -> "Period":
        """Window of the same length ending right before this one."""
        length = self.end - self.start
        return Period(self.start - length, self.start)

    def as_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


class AnalyticsService:
    """Read-only sales figures for managers."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Query building blocks
    # ------------------------------------------------------------------

    def _paid(self, period: Period):
        return self.db.query(Payment).filter(
            Payment.status == PaymentStatus.PAID,
            Payment.paid_at >= period.start,
            Payment.paid_at <= period.end,
        )

    def _sold_items(self, period: Period, *entities):
        """Order items billed by a PAID payment inside the period, cancelled lines excluded."""
        return (
            self.db.query(*entities)
            .select_from(OrderItem)
            .join(Order, OrderItem.order_id == Order.id)
            .join(Payment, or_(Payment.order_id == Order.id, Payment.session_id == Order.session_id))
            .filter(
                Payment.status == PaymentStatus.PAID,
                Payment.paid_at >= period.start,
                Payment.paid_at <= period.end,
                OrderItem.status != OrderItemStatus.CANCELLED,
            )
        )

    def _payment_rows(self, period: Period) -> List[Tuple[datetime, Decimal]]:
        rows = self._paid(period).with_entities(Payment.paid_at, Payment.total_amount).all()
        return [(as_utc(paid_at), Decimal(amount)) for paid_at, amount in rows]

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def revenue_stats(self, caps: Capabilities, period: Period) -> Dict[str, Any]:
        caps.require(Permission.ANALYTICS_VIEW)
        revenue, payments = self._paid(period).with_entities(
            func.coalesce(func.sum(Payment.total_amount), 0), func.count(Payment.id)
        ).one()
        orders, items_sold = self._sold_items(
            period, func.count(func.distinct(Order.id)), func.coalesce(func.sum(OrderItem.quantity), 0)
        ).one()
        customers = self._sold_items(period, func.count(func.distinct(Order.customer_phone))).filter(
            Order.customer_phone.isnot(None)
        ).scalar()
        revenue = Decimal(str(revenue))
        return {
            "period": period.as_dict(),
            "total_revenue": _money(revenue),
            "total_payments": payments,
            "total_orders": orders,
            "avg_payment_value": _average(revenue, payments),
            "total_items_sold": int(items_sold),
            "total_customers": customers or 0,
        }

    def daily_revenue(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        days: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for paid_at, amount in sorted(self._payment_rows(period)):
            day = days.setdefault(paid_at.date().isoformat(), {"revenue": ZERO, "payments": 0})
            day["revenue"] += amount
            day["payments"] += 1

        items_by_day: Dict[str, int] = {}
        for paid_at, quantity in self._sold_items(period, Payment.paid_at, OrderItem.quantity).all():
            key = as_utc(paid_at).date().isoformat()
            items_by_day[key] = items_by_day.get(key, 0) + quantity

        return [
            {
                "date": key,
                "revenue": _money(day["revenue"]),
                "payments": day["payments"],
                "items_sold": items_by_day.get(key, 0),
            }
            for key, day in days.items()
        ]

    def best_selling_items(self, caps: Capabilities, period: Period, limit: int = 10) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        quantity = func.sum(OrderItem.quantity)
        rows = (
            self._sold_items(
                period,
                MenuItem.id,
                MenuItem.name,
                MenuItem.image_url,
                quantity,
                func.sum(OrderItem.unit_price * OrderItem.quantity),
                func.count(func.distinct(Order.id)),
            )
            .join(MenuItem, OrderItem.menu_item_id == MenuItem.id)
            .group_by(MenuItem.id, MenuItem.name, MenuItem.image_url)
            .order_by(quantity.desc(), MenuItem.name)
            .limit(limit)
            .all()
        )
        return [
            {
                "id": item_id,
                "name": name,
                "image_url": image_url,
                "quantity_sold": int(sold),
                "revenue": _money(revenue),
                "order_count": order_count,
            }
            for item_id, name, image_url, sold, revenue, order_count in rows
        ]

    def category_performance(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        revenue = func.sum(OrderItem.unit_price * OrderItem.quantity)
        rows = (
            self._sold_items(
                period,
                Category.id,
                Category.name,
                func.sum(OrderItem.quantity),
                revenue,
                func.count(func.distinct(Order.id)),
            )
            .join(MenuItem, OrderItem.menu_item_id == MenuItem.id)
            .join(Category, MenuItem.category_id == Category.id)
            .group_by(Category.id, Category.name)
            .order_by(revenue.desc())
            .all()
        )
        return [
            {
                "id": category_id,
                "name": name,
                "items_sold": int(sold),
                "revenue": _money(total),
                "order_count": order_count,
            }
            for category_id, name, sold, total, order_count in rows
        ]

    def hourly_sales(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        hours: Dict[int, Dict[str, Any]] = {}
        for paid_at, amount in self._payment_rows(period):
            bucket = hours.setdefault(paid_at.hour, {"revenue": ZERO, "payments": 0})
            bucket["revenue"] += amount
            bucket["payments"] += 1
        return [
            {
                "hour": hour,
                "revenue": _money(bucket["revenue"]),
                "payments": bucket["payments"],
                "avg_payment_value": _average(bucket["revenue"], bucket["payments"]),
            }
            for hour, bucket in sorted(hours.items())
        ]

    def payment_methods(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        amount = func.sum(Payment.total_amount)
        rows = (
            self._paid(period)
            .with_entities(Payment.method, func.count(Payment.id), amount)
            .group_by(Payment.method)
            .order_by(amount.desc())
            .all()
        )
        grand_total = sum((Decimal(str(total)) for _, _, total in rows), ZERO)
        return [
            {
                "method": method.value,
                "transaction_count": count,
                "total_amount": _money(total),
                "percentage": _percent(Decimal(str(total)), grand_total),
            }
            for method, count, total in rows
        ]

    def order_types(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        revenue = func.sum(OrderItem.unit_price * OrderItem.quantity)
        rows = (
            self._sold_items(period, Order.order_type, func.count(func.distinct(Order.id)), revenue)
            .group_by(Order.order_type)
            .order_by(revenue.desc())
            .all()
        )
        return [
            {
                "type": order_type.value,
                "order_count": count,
                "revenue": _money(total),
                "avg_order_value": _average(Decimal(str(total)), count),
            }
            for order_type, count, total in rows
        ]

    def table_utilization(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        """Closed sessions started inside the period, per table."""
        caps.require(Permission.ANALYTICS_VIEW)
        sessions = (
            self.db.query(TableSession.id, Table.id, Table.number, TableSession.customer_count,
                          TableSession.started_at, TableSession.closed_at)
            .join(Table, TableSession.table_id == Table.id)
            .filter(
                TableSession.status == SessionStatus.CLOSED,
                TableSession.started_at >= period.start,
                TableSession.started_at <= period.end,
            )
            .all()
        )
        session_ids = [row[0] for row in sessions]
        revenue_by_session: Dict[int, Any] = {}
        if session_ids:
            revenue_by_session = dict(
                self.db.query(Payment.session_id, func.sum(Payment.total_amount))
                .filter(Payment.status == PaymentStatus.PAID, Payment.session_id.in_(session_ids))
                .group_by(Payment.session_id)
                .all()
            )

        tables: Dict[int, Dict[str, Any]] = {}
        for session_id, table_id, number, customers, started_at, closed_at in sessions:
            entry = tables.setdefault(table_id, {
                "table_id": table_id, "table_number": number, "session_count": 0,
                "revenue": ZERO, "total_customers": 0, "minutes": [],
            })
            entry["session_count"] += 1
            entry["revenue"] += Decimal(str(revenue_by_session.get(session_id) or 0))
            entry["total_customers"] += customers
            if closed_at is not None:
                entry["minutes"].append((as_utc(closed_at) - as_utc(started_at)).total_seconds() / 60)

        result = []
        for entry in sorted(tables.values(), key=lambda e: (-e["revenue"], e["table_number"])):
            minutes = entry.pop("minutes")
            entry["revenue"] = _money(entry["revenue"])
            entry["avg_session_minutes"] = round(sum(minutes) / len(minutes), 1) if minutes else None
            result.append(entry)
        return result

    def peak_hours(self, caps: Capabilities, period: Period) -> List[Dict[str, Any]]:
        caps.require(Permission.ANALYTICS_VIEW)
        parts: Dict[str, Dict[str, Any]] = {}
        for paid_at, amount in self._payment_rows(period):
            bucket = parts.setdefault(day_part(paid_at.hour), {"revenue": ZERO, "payments": 0})
            bucket["revenue"] += amount
            bucket["payments"] += 1
        ranked = sorted(parts.items(), key=lambda kv: kv[1]["revenue"], reverse=True)
        return [
            {
                "period": label,
                "payments": bucket["payments"],
                "revenue": _money(bucket["revenue"]),
                "avg_payment_value": _average(bucket["revenue"], bucket["payments"]),
            }
            for label, bucket in ranked
        ]

    def revenue_comparison(
        self,
        caps: Capabilities,
        period: Period,
        previous: Optional[Period] = None,
    ) -> Dict[str, Any]:
        caps.require(Permission.ANALYTICS_VIEW)
        previous = previous or period.previous()

        def totals(window: Period) -> Tuple[Decimal, int]:
            revenue, count = self._paid(window).with_entities(
                func.coalesce(func.sum(Payment.total_amount), 0), func.count(Payment.id)
            ).one()
            return Decimal(str(revenue)), count

        current_revenue, current_payments = totals(period)
        previous_revenue, previous_payments = totals(previous)
        return {
            "current": {**period.as_dict(), "revenue": _money(current_revenue), "payments": current_payments},
            "previous": {**previous.as_dict(), "revenue": _money(previous_revenue), "payments": previous_payments},
            "change": {
                "revenue": _money(current_revenue - previous_revenue),
                "revenue_percent": _percent(current_revenue - previous_revenue, previous_revenue),
                "payments": current_payments - previous_payments,
                "payments_percent": _percent(Decimal(current_payments - previous_payments), Decimal(previous_payments)),
            },
        }

    def dashboard(self, caps: Capabilities, period: Period) -> Dict[str, Any]:
        caps.require(Permission.ANALYTICS_VIEW)
        logger.info(f"Building analytics dashboard for {period.start:%Y-%m-%d}..{period.end:%Y-%m-%d}")
        return {
            "stats": self.revenue_stats(caps, period),
            "daily_revenue": self.daily_revenue(caps, period),
            "best_selling_items": self.best_selling_items(caps, period),
            "category_performance": self.category_performance(caps, period),
            "payment_methods": self.payment_methods(caps, period),
            "order_types": self.order_types(caps, period),
            "peak_hours": self.peak_hours(caps, period),
        }
