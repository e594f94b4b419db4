"""
KPI aggregation service
-----------------------
Purpose:
- Compute revenue, order count and AOV from mirrored orders over a symbolic
  range (7d / 30d / 90d), a daily sales series, and a top-products ranking.
- Roll one UTC day into `kpi_daily`, recomputed from scratch on every run
  (daily cron or on demand), never accumulated incrementally.
Design choices:
- Sums are done in Python over Decimal columns so SQLite and PostgreSQL agree
  to the cent.
- AOV has a divide-by-zero guard: no orders means AOV 0.
- Unknown range strings fall back to 30 days rather than erroring; the
  dashboard always gets numbers.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PersistenceError, ValidationError
from ..models import KpiDaily, Order, OrderItem, Refund
from ..utils.dates import day_bounds, utc_now

logger = logging.getLogger(__name__)

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_RANGE = "30d"
TOP_PRODUCTS_LIMIT = 10
ZERO = Decimal("0")


@dataclass
class KpiSummary:
    shop: str
    range: str
    start: datetime
    end: datetime
    revenue: Decimal = ZERO
    orders: int = 0
    aov: Decimal = ZERO


@dataclass
class DailySales:
    day: str  # YYYY-MM-DD (UTC)
    revenue: Decimal = ZERO
    orders: int = 0


@dataclass
class RankedProduct:
    product_id: str
    title: str
    quantity: int = 0
    revenue: Decimal = ZERO


@dataclass
class DailyAggregate:
    shop: str
    date: date
    revenue: Decimal = ZERO
    orders: int = 0
    aov: Decimal = ZERO
    refunds: Decimal = ZERO


@dataclass
class SalesSeries:
    shop: str
    range: str
    start: datetime
    end: datetime
    series: List[DailySales] = field(default_factory=list)


@dataclass
class TopProducts:
    shop: str
    range: str
    start: datetime
    end: datetime
    products: List[RankedProduct] = field(default_factory=list)


# =============================================================================
# PURE HELPERS
# =============================================================================

def parse_range(range_str: Optional[str], now: Optional[datetime] = None) -> Tuple[str, datetime, datetime]:
    """Resolve "7d" | "30d" | "90d" into (label, start, end); anything else is 30d."""
    label = range_str if range_str in RANGE_DAYS else DEFAULT_RANGE
    end = now or utc_now()
    return label, end - timedelta(days=RANGE_DAYS[label]), end


def compute_aov(revenue: Decimal, orders: int) -> Decimal:
    """Average order value with a divide-by-zero guard."""
    if not orders:
        return ZERO
    return Decimal(revenue) / orders


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def rank_products(items: Iterable[Mapping[str, Any]], limit: int = TOP_PRODUCTS_LIMIT) -> List[RankedProduct]:
    """Accumulate quantity and revenue (unit price x quantity) per product.

    Items are keyed on product id, then title, then "unknown". Sorted by
    revenue descending (ties keep first-seen order), truncated to `limit`.
    """
    ranked: Dict[str, RankedProduct] = {}
    for item in items:
        product_id = item.get("product_id")
        title = item.get("title")
        key = product_id or title or "unknown"
        entry = ranked.get(key)
        if entry is None:
            entry = RankedProduct(product_id=str(product_id or "unknown"), title=title or "Unknown")
            ranked[key] = entry
        quantity = int(item.get("quantity") or 0)
        entry.quantity += quantity
        entry.revenue += _to_decimal(item.get("price")) * quantity

    return sorted(ranked.values(), key=lambda p: p.revenue, reverse=True)[:limit]


# =============================================================================
# QUERIES
# =============================================================================

def _order_totals(db: Session, shop: str, start: datetime, end: datetime) -> List[Tuple[Optional[datetime], Decimal]]:
    rows = (
        db.query(Order.created_at, Order.total)
        .filter(Order.shop == shop)
        .filter(Order.created_at >= start)
        .filter(Order.created_at <= end)
        .all()
    )
    return [(created_at, _to_decimal(total)) for created_at, total in rows]


def summary(db: Session, shop: str, range_str: Optional[str] = None, now: Optional[datetime] = None) -> KpiSummary:
    """Revenue, order count and AOV over the range. Empty ranges yield zeros."""
    label, start, end = parse_range(range_str, now)
    totals = _order_totals(db, shop, start, end)
    revenue = sum((total for _, total in totals), ZERO)
    orders = len(totals)
    return KpiSummary(
        shop=shop,
        range=label,
        start=start,
        end=end,
        revenue=revenue,
        orders=orders,
        aov=compute_aov(revenue, orders),
    )


def sales_daily(db: Session, shop: str, range_str: Optional[str] = None, now: Optional[datetime] = None) -> SalesSeries:
    """Revenue and order count per UTC day, ascending; days without orders are omitted."""
    label, start, end = parse_range(range_str, now)
    by_day: Dict[str, DailySales] = {}
    for created_at, total in _order_totals(db, shop, start, end):
        day = created_at.date().isoformat()
        point = by_day.setdefault(day, DailySales(day=day))
        point.revenue += total
        point.orders += 1
    return SalesSeries(shop=shop, range=label, start=start, end=end, series=[by_day[d] for d in sorted(by_day)])


def top_products(db: Session, shop: str, range_str: Optional[str] = None, now: Optional[datetime] = None) -> TopProducts:
    """Top 10 products by revenue for orders created in the range."""
    label, start, end = parse_range(range_str, now)
    rows = (
        db.query(OrderItem.product_id, OrderItem.title, OrderItem.quantity, OrderItem.price)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.shop == shop)
        .filter(Order.created_at >= start)
        .filter(Order.created_at <= end)
        .all()
    )
    items = [
        {"product_id": product_id, "title": title, "quantity": quantity, "price": price}
        for product_id, title, quantity, price in rows
    ]
    return TopProducts(shop=shop, range=label, start=start, end=end, products=rank_products(items))


# =============================================================================
# DAILY ROLLUP
# =============================================================================

def _parse_day(date_str: Optional[str]) -> date:
    if not date_str:
        return utc_now().date()
    try:
        return date.fromisoformat(date_str)
    except ValueError:
        raise ValidationError(f"Invalid date: {date_str}. Expected YYYY-MM-DD")


def aggregate_daily(db: Session, shop: str, date_str: Optional[str] = None) -> DailyAggregate:
    """Recompute one UTC day (default today) and upsert its `kpi_daily` row.

    Sessions, conversions, ad spend, ROAS and CAC have no source in Shopify
    order data and are stored as 0.

    Raises:
        ValidationError: Unparseable date
        PersistenceError: Upsert failed
    """
    day = _parse_day(date_str)
    start, end = day_bounds(day)

    totals = _order_totals(db, shop, start, end)
    revenue = sum((total for _, total in totals), ZERO)
    orders = len(totals)
    aov = compute_aov(revenue, orders)

    refund_amounts = (
        db.query(Refund.amount)
        .filter(Refund.shop == shop)
        .filter(Refund.created_at >= start)
        .filter(Refund.created_at <= end)
        .all()
    )
    refunds = sum((_to_decimal(amount) for (amount,) in refund_amounts), ZERO)

    try:
        row = db.query(KpiDaily).filter(KpiDaily.shop == shop, KpiDaily.date == day).first()
        if row is None:
            row = KpiDaily(shop=shop, date=day)
            db.add(row)
        row.revenue = revenue
        row.orders = orders
        row.aov = aov
        row.refunds = refunds
        row.sessions = 0
        row.conversions = 0
        row.conversion_rate = ZERO
        row.ad_spend = ZERO
        row.roas = ZERO
        row.cac = ZERO
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[KPI] Daily aggregate failed for {shop} {day}: {e}")
        raise PersistenceError(f"Failed to store daily KPIs for {shop}") from e

    logger.info(f"[KPI] Aggregated {shop} {day}: revenue={revenue} orders={orders} refunds={refunds}")
    return DailyAggregate(shop=shop, date=day, revenue=revenue, orders=orders, aov=aov, refunds=refunds)
