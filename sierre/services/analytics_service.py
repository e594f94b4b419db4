"""
Store analytics snapshot
------------------------
Purpose:
- Build the `StoreMetrics` the insights engine reads from mirrored orders:
  the last 30 days against the 30 days immediately before them.
Design choices:
- Shopify order data carries no traffic information, so sessions are
  estimated from orders at a 3% conversion rate, visitors as 80% of
  sessions, cart abandonment at the 70% industry baseline and the channel mix
  from a fixed split. Every estimated field is marked below.
- A "new" customer is one whose first order ever falls inside the window;
  "active" customers are the distinct customers that ordered in the window.
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Order
from ..utils.dates import utc_now
from .insights_engine import StoreMetrics, TrafficSources

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30
ESTIMATED_CONVERSION = 0.03
VISITORS_PER_SESSION = 0.8
BASELINE_CART_ABANDONMENT = 70
ESTIMATED_TRAFFIC_MIX = TrafficSources(ads=25, organic=35, social=15, referral=10, direct=10, email=5)


def _change_percent(current: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def _window_orders(db: Session, shop: str, start: datetime, end: datetime) -> List[Tuple]:
    """(total, discounts, customer_id) for orders created in [start, end)."""
    return (
        db.query(Order.total, Order.discounts, Order.customer_id)
        .filter(Order.shop == shop)
        .filter(Order.created_at >= start)
        .filter(Order.created_at < end)
        .all()
    )


def _first_order_dates(db: Session, shop: str) -> Dict[str, datetime]:
    rows = (
        db.query(Order.customer_id, func.min(Order.created_at))
        .filter(Order.shop == shop)
        .filter(Order.customer_id.isnot(None))
        .group_by(Order.customer_id)
        .all()
    )
    return {customer_id: first for customer_id, first in rows if first is not None}


def build_store_metrics(db: Session, shop: str, now: Optional[datetime] = None) -> StoreMetrics:
    """Snapshot the last 30 days of `shop` for the insights engine."""
    end = now or utc_now()
    start = end - timedelta(days=WINDOW_DAYS)
    previous_start = start - timedelta(days=WINDOW_DAYS)

    current = _window_orders(db, shop, start, end)
    previous = _window_orders(db, shop, previous_start, start)

    gross = float(sum((Decimal(total or 0) for total, _, _ in current), Decimal("0")))
    discounts = float(sum((Decimal(d or 0) for _, d, _ in current), Decimal("0")))
    previous_gross = float(sum((Decimal(total or 0) for total, _, _ in previous), Decimal("0")))

    orders = len(current)
    aov = gross / orders if orders else 0.0

    first_orders = _first_order_dates(db, shop)
    new_customers = sum(1 for first in first_orders.values() if start <= first < end)
    previous_new = sum(1 for first in first_orders.values() if previous_start <= first < start)

    active = len({customer_id for _, _, customer_id in current if customer_id})
    previous_active = len({customer_id for _, _, customer_id in previous if customer_id})

    # Estimated: no session data in Shopify orders
    sessions = int(math.floor(orders / ESTIMATED_CONVERSION + 0.5))
    conversion_rate = orders / sessions * 100 if sessions else 0.0
    visitors = int(math.floor(sessions * VISITORS_PER_SESSION + 0.5))

    revenue_change = _change_percent(gross, previous_gross)

    metrics = StoreMetrics(
        gross_revenue=gross,
        net_revenue=gross - discounts,
        revenue_change_percent=revenue_change,
        new_customers=new_customers,
        new_customers_change_percent=_change_percent(new_customers, previous_new),
        active_customers=active,
        active_customers_change_percent=_change_percent(active, previous_active),
        growth_rate=revenue_change,
        conversion_rate=conversion_rate,
        cart_abandonment_rate=BASELINE_CART_ABANDONMENT,
        traffic_sources=ESTIMATED_TRAFFIC_MIX,
        total_orders=orders,
        average_order_value=aov,
        total_visitors=visitors,
        total_sessions=sessions,
    )
    logger.info(
        f"[ANALYTICS] {shop}: orders={orders} gross={gross:.2f} change={revenue_change:.1f}% "
        f"new_customers={new_customers} active={active}"
    )
    return metrics
