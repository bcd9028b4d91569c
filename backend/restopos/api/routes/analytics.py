"""Sales analytics routes.

Every report takes an optional ``start_date``/``end_date`` window and
defaults to the last 30 days.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from restopos.core.rate_limit import limiter
from restopos.core.rbac import StaffCapabilities
from restopos.db.session import DbSession
from restopos.services.analytics_service import AnalyticsService, Period

router = APIRouter()


@router.get("/dashboard")
@limiter.limit("60/minute")
def get_dashboard(
    request: Request,
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    """Headline stats plus the main breakdowns in one call."""
    return AnalyticsService(db).dashboard(caps, Period.resolve(start_date, end_date))


@router.get("/revenue-stats")
def get_revenue_stats(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).revenue_stats(caps, Period.resolve(start_date, end_date))


@router.get("/daily-revenue")
def get_daily_revenue(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).daily_revenue(caps, Period.resolve(start_date, end_date))


@router.get("/best-selling-items")
def get_best_selling_items(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(10, ge=1, le=100),
):
    return AnalyticsService(db).best_selling_items(caps, Period.resolve(start_date, end_date), limit=limit)


@router.get("/category-performance")
def get_category_performance(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).category_performance(caps, Period.resolve(start_date, end_date))


@router.get("/hourly-sales")
def get_hourly_sales(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).hourly_sales(caps, Period.resolve(start_date, end_date))


@router.get("/payment-methods")
def get_payment_methods(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).payment_methods(caps, Period.resolve(start_date, end_date))


@router.get("/order-types")
def get_order_types(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).order_types(caps, Period.resolve(start_date, end_date))


@router.get("/table-utilization")
def get_table_utilization(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).table_utilization(caps, Period.resolve(start_date, end_date))


@router.get("/peak-hours")
def get_peak_hours(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    return AnalyticsService(db).peak_hours(caps, Period.resolve(start_date, end_date))


@router.get("/revenue-comparison")
def get_revenue_comparison(
    caps: StaffCapabilities,
    db: DbSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    previous_start_date: Optional[datetime] = None,
    previous_end_date: Optional[datetime] = None,
):
    """Compare with an explicit earlier window, or the same-length window just before."""
    previous = None
    if previous_start_date or previous_end_date:
        previous = Period.resolve(previous_start_date, previous_end_date)
    return AnalyticsService(db).revenue_comparison(caps, Period.resolve(start_date, end_date), previous)
