"""Pydantic schemas for request/response payloads."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(
        description="Service status",
        example="ok"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok"
            }
        }
    }


class ErrorResponse(BaseModel):
    """Body of every non-2xx response raised from a SierreError."""

    error: str = Field(description="Human-readable error message", example="Missing shop")


# =============================================================================
# SHOPIFY CONNECTION & SYNC
# =============================================================================

class ShopRequest(BaseModel):
    """Body carrying the shop domain (sync, backfill, disconnect)."""

    shop: Optional[str] = Field(
        default=None,
        description="Shop domain",
        example="mystore.myshopify.com"
    )


class DisconnectResponse(BaseModel):
    ok: bool = Field(description="Whether the disconnect completed", example=True)
    shop: str = Field(description="Shop domain", example="mystore.myshopify.com")


class SyncStatusResponse(BaseModel):
    """Per-shop sync checkpoints."""

    orders_last_sync_at: Optional[datetime] = Field(default=None, description="Last order sync checkpoint (UTC)")
    products_last_sync_at: Optional[datetime] = Field(default=None, description="Last product sync checkpoint (UTC)")
    inventory_last_sync_at: Optional[datetime] = Field(default=None, description="Last inventory sync checkpoint (UTC)")

    model_config = ConfigDict(from_attributes=True)


class ConnectionStatusResponse(BaseModel):
    """Connection state of one shop."""

    shop: str = Field(description="Shop domain", example="mystore.myshopify.com")
    connected: bool = Field(description="Whether a credential is stored", example=True)
    connected_at: Optional[datetime] = Field(default=None, description="When OAuth completed (UTC)")
    scope: Optional[str] = Field(default=None, description="Granted scopes", example="read_orders,read_products")
    sync: Optional[SyncStatusResponse] = Field(default=None, description="Sync checkpoints, if any")


class SyncResponse(BaseModel):
    """Result of an incremental order or product sync."""

    ok: bool = Field(description="Whether the sync completed", example=True)
    count: int = Field(description="Records fetched from Shopify", example=42)
    upserted: int = Field(default=0, description="Distinct records written", example=42)
    skipped: int = Field(default=0, description="Malformed records skipped", example=0)
    checkpoint: Optional[datetime] = Field(default=None, description="Checkpoint stored after the pass")


class BackfillResponse(BaseModel):
    """Result of a full historical order pull."""

    ok: bool = Field(description="Whether the backfill completed", example=True)
    fetched: int = Field(description="Orders fetched from Shopify", example=1200)
    upserted: int = Field(default=0, description="Orders written", example=1200)


class WebhookAck(BaseModel):
    """Acknowledgement returned to Shopify for every authentic delivery."""

    ok: bool = Field(description="Always true for a verified delivery", example=True)
    topic: Optional[str] = Field(default=None, description="X-Shopify-Topic header", example="orders/create")
    shop: Optional[str] = Field(default=None, description="X-Shopify-Shop-Domain header", example="mystore.myshopify.com")


# =============================================================================
# KPIs
# =============================================================================

class _MoneyModel(BaseModel):
    """Serializes Decimal money fields as JSON numbers."""

    @field_serializer("revenue", "aov", "refunds", check_fields=False)
    def serialize_money(self, value: Decimal) -> float:
        return float(value)


class KpiSummaryResponse(_MoneyModel):
    shop: str = Field(description="Shop domain", example="mystore.myshopify.com")
    range: str = Field(description="Resolved range label", example="30d")
    start: datetime = Field(description="Range start (UTC)")
    end: datetime = Field(description="Range end (UTC)")
    revenue: Decimal = Field(description="Sum of order totals", example=1234.5)
    orders: int = Field(description="Order count", example=25)
    aov: Decimal = Field(description="Average order value (0 without orders)", example=49.38)


class DailySalesPoint(_MoneyModel):
    day: str = Field(description="UTC day (YYYY-MM-DD)", example="2024-10-01")
    revenue: Decimal = Field(description="Sum of order totals for the day", example=310.0)
    orders: int = Field(description="Orders created that day", example=6)


class SalesDailyResponse(BaseModel):
    shop: str = Field(description="Shop domain", example="mystore.myshopify.com")
    range: str = Field(description="Resolved range label", example="7d")
    start: datetime = Field(description="Range start (UTC)")
    end: datetime = Field(description="Range end (UTC)")
    series: List[DailySalesPoint] = Field(default_factory=list, description="Ascending by day")


class TopProduct(_MoneyModel):
    product_id: str = Field(description="Shopify product id or 'unknown'", example="632910392")
    title: str = Field(description="Line item title", example="IPod Nano - 8GB")
    quantity: int = Field(description="Units sold", example=12)
    revenue: Decimal = Field(description="Unit price x quantity", example=2388.0)


class TopProductsResponse(BaseModel):
    shop: str = Field(description="Shop domain", example="mystore.myshopify.com")
    range: str = Field(description="Resolved range label", example="30d")
    start: datetime = Field(description="Range start (UTC)")
    end: datetime = Field(description="Range end (UTC)")
    products: List[TopProduct] = Field(default_factory=list, description="Top 10 by revenue")


class AggregateDailyRequest(BaseModel):
    shop: Optional[str] = Field(default=None, description="Shop domain", example="mystore.myshopify.com")
    date: Optional[str] = Field(default=None, description="UTC day to recompute (default today)", example="2024-10-01")


class AggregateDailyResponse(_MoneyModel):
    ok: bool = Field(description="Whether the rollup was stored", example=True)
    shop: str = Field(description="Shop domain", example="mystore.myshopify.com")
    date: str = Field(description="UTC day rolled up (YYYY-MM-DD)", example="2024-10-01")
    revenue: Decimal = Field(description="Sum of order totals", example=310.0)
    orders: int = Field(description="Order count", example=6)
    aov: Decimal = Field(description="Average order value", example=51.67)
    refunds: Decimal = Field(description="Sum of refunds created that day", example=20.0)


# =============================================================================
# INSIGHTS
# =============================================================================
# Field names are camelCase on the wire to match the dashboard client.

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


class TrafficSourcesIn(_CamelModel):
    ads: float = Field(default=0, description="Paid ads share (%)", example=25)
    organic: float = Field(default=0, description="Organic search share (%)", example=35)
    social: float = Field(default=0, description="Social share (%)", example=15)
    referral: float = Field(default=0, description="Referral share (%)", example=10)
    direct: float = Field(default=0, description="Direct share (%)", example=10)
    email: float = Field(default=0, description="Email share (%)", example=5)


class StoreMetricsIn(_CamelModel):
    """Precomputed store snapshot supplied by the caller."""

    gross_revenue: float = Field(default=0, description="Gross revenue", example=12000)
    net_revenue: float = Field(default=0, description="Gross minus discounts", example=11500)
    revenue_change_percent: float = Field(default=0, description="Revenue change vs previous period (%)", example=-12.5)
    new_customers: float = Field(default=0, description="Customers with a first order in the period", example=80)
    new_customers_change_percent: float = Field(default=0, description="Change vs previous period (%)", example=-5)
    active_customers: float = Field(default=0, description="Distinct ordering customers", example=140)
    active_customers_change_percent: float = Field(default=0, description="Change vs previous period (%)", example=3)
    growth_rate: float = Field(default=0, description="Growth rate (%)", example=-12.5)
    conversion_rate: float = Field(default=0, description="Conversion rate (%)", example=2.1)
    cart_abandonment_rate: float = Field(default=0, description="Cart abandonment rate (%)", example=70)
    traffic_sources: TrafficSourcesIn = Field(default_factory=TrafficSourcesIn, description="Channel mix")
    total_orders: float = Field(default=0, description="Orders in the period", example=240)
    average_order_value: float = Field(default=0, description="Average order value", example=50)
    total_visitors: float = Field(default=0, description="Visitors in the period", example=6400)
    total_sessions: float = Field(default=0, description="Sessions in the period", example=8000)


class AnalyzeRequest(_CamelModel):
    shop_name: str = Field(description="Display name used in the summary", example="My Store")
    metrics: StoreMetricsIn = Field(description="Metrics snapshot to analyze")


class InsightMetricsOut(_CamelModel):
    current: float
    previous: Optional[float] = None
    change: Optional[float] = None


class StoreInsightOut(_CamelModel):
    id: str = Field(description="Stable rule id", example="low-aov")
    type: str = Field(description="problem | opportunity | success", example="opportunity")
    severity: str = Field(description="low | medium | high | critical", example="medium")
    title: str
    description: str
    impact: str
    recommendation: str
    metrics: InsightMetricsOut
    category: str = Field(description="revenue | conversion | customers | marketing | operations", example="revenue")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StoreAnalysisResponse(_CamelModel):
    overall_health: str = Field(description="excellent | good | warning | critical", example="warning")
    insights: List[StoreInsightOut] = Field(default_factory=list)
    summary: str
    top_priorities: List[str] = Field(default_factory=list, description="Up to three problem recommendations")

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)
