"""SQLAlchemy ORM models.

WHAT:
    Mirror of the Shopify data Sierre needs for analytics: connected shops
    (credentials), orders and line items, refunds, products and variants,
    inventory snapshots, per-shop sync checkpoints, daily KPI rollups and a
    webhook audit log.

WHY:
    Every row that originates in Shopify is keyed on the Shopify-assigned id
    (stringified), so re-processing the same order, product or refund from
    either the REST sync or a webhook overwrites the row instead of
    duplicating it. Child rows carry plain id columns instead of foreign keys
    because webhooks arrive out of order (a refund can land before its order).

REFERENCES:
    - Shopify Order resource: https://shopify.dev/docs/api/admin-rest/2024-10/resources/order
    - sierre/services/shopify_persistence.py: upsert helpers writing these tables
"""

import uuid

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base

from .utils.dates import utc_now


# Single Base used by the entire application
Base = declarative_base()


# =============================================================================
# CONNECTED SHOPS
# =============================================================================

class ShopCredential(Base):
    """OAuth credential for one connected shop.

    WHAT: Offline access token (Fernet-encrypted) plus granted scopes
    WHY: Every Admin API call needs the shop's token; one row per shop domain
    """
    __tablename__ = "shopify_stores"

    shop = Column(String, primary_key=True)  # mystore.myshopify.com
    access_token = Column(Text, nullable=False)  # Fernet ciphertext, never plaintext
    scope = Column(String, nullable=True)
    installed_by = Column(String, nullable=True)  # User id that completed OAuth
    connected_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __str__(self):
        return f"{self.shop}"


class SyncStatus(Base):
    """Per-shop incremental sync checkpoints."""
    __tablename__ = "sync_status"

    shop = Column(String, primary_key=True)
    orders_last_sync_at = Column(DateTime, nullable=True)
    products_last_sync_at = Column(DateTime, nullable=True)
    inventory_last_sync_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __str__(self):
        return f"{self.shop} (orders @ {self.orders_last_sync_at})"


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """Order facts.

    WHAT: Totals, status and customer reference of a Shopify order
    WHY: Source of truth for revenue, AOV and customer-derived metrics
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True)  # Shopify order id
    shop = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=True, index=True)
    updated_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    currency = Column(String, nullable=True)

    subtotal = Column(Numeric(18, 4), nullable=False, default=0)
    total = Column(Numeric(18, 4), nullable=False, default=0)
    tax = Column(Numeric(18, 4), nullable=False, default=0)
    discounts = Column(Numeric(18, 4), nullable=False, default=0)

    financial_status = Column(String, nullable=True)
    fulfillment_status = Column(String, nullable=True)

    customer_id = Column(String, nullable=True, index=True)
    customer_email = Column(String, nullable=True)

    synced_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __str__(self):
        return f"Order {self.id} ({self.shop}) {self.total} {self.currency or ''}".strip()


class OrderItem(Base):
    """Order line item.

    WHAT: Product/variant, quantity and unit price per line
    WHY: Top-products ranking needs per-product quantity and revenue
    """
    __tablename__ = "order_items"

    id = Column(String, primary_key=True)  # Shopify line item id
    order_id = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=True)
    variant_id = Column(String, nullable=True)
    title = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(18, 4), nullable=False, default=0)  # Unit price

    def __str__(self):
        return f"{self.title or self.product_id or self.id} x{self.quantity}"


class Refund(Base):
    """Refund recorded from `refunds/create` webhooks.

    NOTE: amount is derived from the webhook payload (refund transaction, else
    summed line-item subtotals) and is best-effort, not authoritative.
    """
    __tablename__ = "refunds"

    id = Column(String, primary_key=True)  # Shopify refund id
    shop = Column(String, nullable=False, index=True)
    order_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(18, 4), nullable=False, default=0)
    currency = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True, index=True)

    def __str__(self):
        return f"Refund {self.id} on order {self.order_id}: {self.amount}"


# =============================================================================
# CATALOG & INVENTORY
# =============================================================================

class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True)  # Shopify product id
    shop = Column(String, nullable=False, index=True)
    title = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    status = Column(String, nullable=True)  # active | draft | archived
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)

    def __str__(self):
        return f"{self.title or self.id}"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String, primary_key=True)  # Shopify variant id
    product_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    price = Column(Numeric(18, 4), nullable=False, default=0)
    inventory_quantity = Column(Integer, nullable=True)

    def __str__(self):
        return f"{self.title or self.id} ({self.sku or 'no sku'})"


class InventorySnapshot(Base):
    """Point-in-time available quantity from `inventory_levels/update`.

    Append-only; no diffing against previous snapshots.
    """
    __tablename__ = "inventory_snapshots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    inventory_item_id = Column(String, nullable=True)
    location_id = Column(String, nullable=True)
    available = Column(Integer, nullable=False)
    captured_at = Column(DateTime, default=utc_now, nullable=False)

    def __str__(self):
        return f"{self.inventory_item_id}@{self.location_id}: {self.available}"


# =============================================================================
# AGGREGATES & AUDIT
# =============================================================================

class KpiDaily(Base):
    """Daily KPI rollup, recomputed from scratch by `aggregate_daily`."""
    __tablename__ = "kpi_daily"
    __table_args__ = (
        UniqueConstraint("shop", "date", name="uq_kpi_daily_shop_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)

    revenue = Column(Numeric(18, 4), nullable=False, default=0)
    orders = Column(Integer, nullable=False, default=0)
    aov = Column(Numeric(18, 4), nullable=False, default=0)
    refunds = Column(Numeric(18, 4), nullable=False, default=0)

    # Not derivable from Shopify orders alone; stored as 0 until a traffic/ad source exists
    sessions = Column(Integer, nullable=False, default=0)
    conversions = Column(Integer, nullable=False, default=0)
    conversion_rate = Column(Numeric(10, 4), nullable=False, default=0)
    ad_spend = Column(Numeric(18, 4), nullable=False, default=0)
    roas = Column(Numeric(10, 4), nullable=False, default=0)
    cac = Column(Numeric(18, 4), nullable=False, default=0)

    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    def __str__(self):
        return f"{self.shop} {self.date}: {self.revenue} / {self.orders} orders"


class WebhookLog(Base):
    """Audit trail of every verified webhook (shop, topic, full payload)."""
    __tablename__ = "shopify_webhook_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=True, index=True)
    topic = Column(String, nullable=True)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime, default=utc_now, nullable=False)

    def __str__(self):
        return f"{self.topic} from {self.shop}"
