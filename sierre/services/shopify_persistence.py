"""Idempotent persistence for mirrored Shopify data.

WHAT:
    Row builders (payload → column dict) and batch upserts shared by the
    REST sync engine and the webhook ingestor, plus sync checkpoints and the
    webhook audit log.

WHY:
    Both ingestion paths must converge on the same row for the same Shopify
    id, whatever order events arrive in. Every write here is keyed on the
    Shopify-assigned id and overwrites the stored fields (last write wins).
    Each batch commits on its own; a failure rolls back that batch only.

REFERENCES:
    - sierre/services/shopify_sync_service.py (pull)
    - sierre/services/shopify_webhook_service.py (push)
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PersistenceError
from ..models import (
    InventorySnapshot,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    Refund,
    SyncStatus,
    WebhookLog,
)
from ..utils.dates import parse_datetime, utc_now
from .webhook_payloads import InventoryLevelPayload, OrderPayload, ProductPayload, RefundPayload

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Rows per INSERT statement; keeps bound parameters under SQLite's limit
UPSERT_CHUNK_SIZE = 50


# =============================================================================
# ROW BUILDERS
# =============================================================================

def build_order_row(order: OrderPayload, shop: str) -> Dict[str, Any]:
    """Map an order payload onto `orders` columns; missing amounts become 0."""
    return {
        "id": order.id,
        "shop": shop,
        "created_at": parse_datetime(order.created_at),
        "updated_at": parse_datetime(order.updated_at),
        "closed_at": parse_datetime(order.closed_at),
        "currency": order.currency,
        "subtotal": order.subtotal_price or ZERO,
        "total": order.total_price or ZERO,
        "tax": order.total_tax or ZERO,
        "discounts": order.total_discounts or ZERO,
        "financial_status": order.financial_status,
        "fulfillment_status": order.fulfillment_status,
        "customer_id": order.customer.id if order.customer else None,
        "customer_email": order.email,
    }


def build_order_item_rows(order: OrderPayload) -> List[Dict[str, Any]]:
    """Flatten an order's line items onto `order_items` columns."""
    return [
        {
            "id": item.id,
            "order_id": order.id,
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "title": item.title,
            "sku": item.sku,
            "quantity": item.quantity or 0,
            "price": item.price or ZERO,
        }
        for item in order.line_items
    ]


def build_product_row(product: ProductPayload, shop: str) -> Dict[str, Any]:
    return {
        "id": product.id,
        "shop": shop,
        "title": product.title,
        "product_type": product.product_type,
        "vendor": product.vendor,
        "status": product.status,
        "created_at": parse_datetime(product.created_at),
        "updated_at": parse_datetime(product.updated_at),
    }


def build_variant_rows(product: ProductPayload) -> List[Dict[str, Any]]:
    return [
        {
            "id": variant.id,
            "product_id": product.id,
            "title": variant.title,
            "sku": variant.sku,
            "price": variant.price or ZERO,
            "inventory_quantity": variant.inventory_quantity,
        }
        for variant in product.variants
    ]


# =============================================================================
# GENERIC UPSERT
# =============================================================================

def _insert_for(db: Session, model: Type[Any]):
    """Dialect `insert` that supports ON CONFLICT for the bound engine."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise PersistenceError(f"Upsert is not supported on {dialect}")


def _merge_rows(db: Session, model: Type[Any], rows: Iterable[Dict[str, Any]]) -> int:
    """Stage insert-or-overwrite of `rows` keyed on `id` (caller commits).

    Uses INSERT ... ON CONFLICT (id) DO UPDATE so concurrent writers of the
    same id never race between a read and an insert: whichever statement
    runs last leaves its values in the row.

    Duplicate ids within one batch collapse to the last occurrence.
    """
    by_id: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        by_id[row["id"]] = row
    if not by_id:
        return 0

    rows_by_id = list(by_id.values())
    columns = [column for column in rows_by_id[0] if column != "id"]
    for start in range(0, len(rows_by_id), UPSERT_CHUNK_SIZE):
        stmt = _insert_for(db, model).values(rows_by_id[start:start + UPSERT_CHUNK_SIZE])
        set_ = {column: stmt.excluded[column] for column in columns}
        # ON CONFLICT bypasses Column.onupdate, so refresh those stamps here
        for column in model.__table__.columns:
            if column.onupdate is not None and column.name not in set_:
                set_[column.name] = utc_now()
        db.execute(stmt.on_conflict_do_update(index_elements=["id"], set_=set_))
    return len(by_id)


def _commit(db: Session, label: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SHOPIFY_PERSIST] {label} failed: {e}")
        raise PersistenceError(f"Failed to persist {label}") from e


def _upsert(db: Session, model: Type[Any], rows: Iterable[Dict[str, Any]], label: str) -> int:
    try:
        count = _merge_rows(db, model, rows)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SHOPIFY_PERSIST] {label} failed: {e}")
        raise PersistenceError(f"Failed to persist {label}") from e
    _commit(db, label)
    return count


# =============================================================================
# ORDERS
# =============================================================================

def upsert_orders(db: Session, shop: str, orders: List[OrderPayload]) -> int:
    """Upsert order rows by Shopify order id. Returns distinct orders written."""
    return _upsert(db, Order, (build_order_row(o, shop) for o in orders), "orders")


def upsert_order_items(db: Session, orders: List[OrderPayload]) -> int:
    """Upsert line items of `orders` by Shopify line item id."""
    rows = [row for order in orders for row in build_order_item_rows(order)]
    return _upsert(db, OrderItem, rows, "order items")


# =============================================================================
# PRODUCTS & INVENTORY
# =============================================================================

def upsert_products(db: Session, shop: str, products: List[ProductPayload]) -> int:
    """Upsert products and their variants in one commit."""
    try:
        count = _merge_rows(db, Product, (build_product_row(p, shop) for p in products))
        _merge_rows(db, ProductVariant, [row for p in products for row in build_variant_rows(p)])
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[SHOPIFY_PERSIST] products failed: {e}")
        raise PersistenceError("Failed to persist products") from e
    _commit(db, "products")
    return count


def insert_inventory_snapshot(db: Session, shop: str, level: InventoryLevelPayload) -> InventorySnapshot:
    """Append a point-in-time quantity (no diffing against earlier snapshots)."""
    snapshot = InventorySnapshot(
        shop=shop,
        inventory_item_id=level.inventory_item_id,
        location_id=level.location_id,
        available=level.available,
        captured_at=parse_datetime(level.updated_at) or utc_now(),
    )
    db.add(snapshot)
    _commit(db, "inventory snapshot")
    return snapshot


# =============================================================================
# REFUNDS
# =============================================================================

def upsert_refund(db: Session, shop: str, refund: RefundPayload) -> Dict[str, Any]:
    """Upsert a refund by Shopify refund id; the parent order need not exist yet."""
    row = {
        "id": refund.id,
        "shop": shop,
        "order_id": refund.order_id,
        "amount": refund.refund_amount(),
        "currency": refund.refund_currency(),
        "reason": refund.note,
        "created_at": parse_datetime(refund.created_at),
    }
    _upsert(db, Refund, [row], "refund")
    return row


# =============================================================================
# SYNC CHECKPOINTS
# =============================================================================

def get_sync_status(db: Session, shop: str) -> Optional[SyncStatus]:
    return db.query(SyncStatus).filter(SyncStatus.shop == shop).first()


def record_sync_checkpoint(db: Session, shop: str, field: str, value: datetime) -> datetime:
    """Advance a `sync_status` checkpoint column, never moving it backwards.

    Args:
        field: "orders_last_sync_at" | "products_last_sync_at" | "inventory_last_sync_at"

    Returns:
        The checkpoint actually stored
    """
    status = get_sync_status(db, shop)
    if status is None:
        status = SyncStatus(shop=shop)
        db.add(status)

    previous = getattr(status, field)
    stored = max(previous, value) if previous else value
    if previous and value < previous:
        logger.warning(
            f"[SHOPIFY_SYNC] {field} for {shop} would regress ({previous} -> {value}); keeping {previous}"
        )
    setattr(status, field, stored)
    _commit(db, f"sync checkpoint {field}")
    return stored


# =============================================================================
# WEBHOOK AUDIT LOG
# =============================================================================

def log_webhook(db: Session, shop: Optional[str], topic: Optional[str], payload: Any) -> bool:
    """Record a verified webhook. Best-effort: failures are logged, never raised."""
    try:
        db.add(WebhookLog(shop=shop, topic=topic, payload=payload))
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"[SHOPIFY_WEBHOOK] Failed to log {topic} from {shop}: {e}")
        return False
