"""
KPI router
----------
Purpose:
- Serve the dashboard KPI cards from mirrored Shopify orders: summary
  (revenue, orders, AOV), a daily sales series and the top products.
- Trigger the daily `kpi_daily` rollup on demand (the cron script calls the
  same service function).
Design choices:
- Every read endpoint takes `shop` and a symbolic `range` (7d/30d/90d); an
  unknown range silently means 30d.
- The metric math lives in `kpi_service`; this module only maps dataclasses
  to response models.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from sierre.database import get_db
from sierre.errors import ValidationError
from sierre.schemas import (
    AggregateDailyRequest,
    AggregateDailyResponse,
    DailySalesPoint,
    ErrorResponse,
    KpiSummaryResponse,
    SalesDailyResponse,
    TopProduct,
    TopProductsResponse,
)
from sierre.services import kpi_service

router = APIRouter(
    prefix="/kpis",
    tags=["kpis"],
    responses={400: {"model": ErrorResponse, "description": "Missing shop or invalid date"}},
)


def _require_shop(shop: Optional[str]) -> str:
    if not shop or not shop.strip():
        raise ValidationError("Missing shop")
    return shop.strip()


@router.get("/summary", response_model=KpiSummaryResponse)
def get_summary(
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    range: Optional[str] = Query(default=None, description="7d | 30d | 90d (default 30d)"),
    db: Session = Depends(get_db),
):
    result = kpi_service.summary(db, _require_shop(shop), range)
    return KpiSummaryResponse(**asdict(result))


@router.get("/sales-daily", response_model=SalesDailyResponse)
def get_sales_daily(
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    range: Optional[str] = Query(default=None, description="7d | 30d | 90d (default 30d)"),
    db: Session = Depends(get_db),
):
    result = kpi_service.sales_daily(db, _require_shop(shop), range)
    return SalesDailyResponse(
        shop=result.shop,
        range=result.range,
        start=result.start,
        end=result.end,
        series=[DailySalesPoint(**asdict(point)) for point in result.series],
    )


@router.get("/top-products", response_model=TopProductsResponse)
def get_top_products(
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    range: Optional[str] = Query(default=None, description="7d | 30d | 90d (default 30d)"),
    db: Session = Depends(get_db),
):
    result = kpi_service.top_products(db, _require_shop(shop), range)
    return TopProductsResponse(
        shop=result.shop,
        range=result.range,
        start=result.start,
        end=result.end,
        products=[TopProduct(**asdict(product)) for product in result.products],
    )


@router.post("/aggregate-daily", response_model=AggregateDailyResponse)
def post_aggregate_daily(
    payload: Optional[AggregateDailyRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Recompute one UTC day (default today) into `kpi_daily`."""
    shop = _require_shop(payload.shop if payload else None)
    result = kpi_service.aggregate_daily(db, shop, payload.date if payload else None)
    return AggregateDailyResponse(
        ok=True,
        shop=result.shop,
        date=result.date.isoformat(),
        revenue=result.revenue,
        orders=result.orders,
        aov=result.aov,
        refunds=result.refunds,
    )
