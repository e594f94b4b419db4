"""Shopify sync service functions.

WHAT:
    Pulls orders (with line items) and products from the Admin REST API and
    upserts them into the local mirror:
    - sync_orders: incremental, from the shop's `orders_last_sync_at` checkpoint
    - backfill_orders: full pull on first connection, following pagination
    - sync_products: catalog and variants

WHY:
    Webhooks are at-least-once and can be missed entirely (app downtime,
    deregistration). A periodic pull converges the mirror; idempotent upserts
    make overlapping pulls, concurrent runs and webhook races harmless.

CHECKPOINT POLICY:
    After a successful pass the checkpoint is set to wall-clock now (never
    lower than the stored value). Orders updated while a long pull is running
    can fall before the next window. The newest `updated_at` actually seen is
    returned as `max_updated_at` and logged so that gap is measurable.

REFERENCES:
    - sierre/services/shopify_client.py (API client, retries)
    - sierre/services/shopify_persistence.py (upserts, checkpoints)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..deps import get_settings
from ..errors import ValidationError
from ..utils.dates import parse_datetime, utc_now
from .credential_service import get_access_token
from .shopify_client import ShopifyClient
from .shopify_persistence import (
    get_sync_status,
    record_sync_checkpoint,
    upsert_order_items,
    upsert_orders,
    upsert_products,
)
from .webhook_payloads import OrderPayload, ProductPayload

logger = logging.getLogger(__name__)

# Pages of 250 followed by backfill/product sync before stopping
BACKFILL_MAX_PAGES = 20


@dataclass
class ShopifySyncResult:
    """Outcome of one sync pass."""
    fetched_count: int = 0
    upserted: int = 0
    line_items_upserted: int = 0
    skipped: int = 0  # Payloads that failed to decode
    incremental: bool = False
    checkpoint: Optional[datetime] = None
    max_updated_at: Optional[datetime] = None
    duration_seconds: float = 0.0


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _get_client(db: Session, shop: str, client: Optional[ShopifyClient]) -> ShopifyClient:
    """Return the injected client or build one from the stored credential.

    Raises:
        ValidationError: Shop has no stored credential
    """
    if client is not None:
        return client
    access_token = get_access_token(db, shop)
    if not access_token:
        raise ValidationError("Shop not connected")
    return ShopifyClient(shop, access_token, api_version=get_settings().SHOPIFY_API_VERSION)


def _decode(model: Any, raw_items: List[Dict[str, Any]], shop: str, kind: str) -> Tuple[List[Any], int]:
    """Validate raw REST objects; malformed ones are skipped and logged."""
    decoded: List[Any] = []
    skipped = 0
    for raw in raw_items:
        try:
            decoded.append(model.model_validate(raw))
        except PydanticValidationError as e:
            skipped += 1
            logger.warning(
                f"[SHOPIFY_SYNC] Skipping malformed {kind} {raw.get('id') if isinstance(raw, dict) else raw!r} "
                f"for {shop}: {e.error_count()} error(s)"
            )
    return decoded, skipped


def _max_updated_at(orders: List[OrderPayload]) -> Optional[datetime]:
    stamps = [parse_datetime(o.updated_at) for o in orders if o.updated_at]
    return max(stamps) if stamps else None


async def _pull_orders(
    db: Session,
    shop: str,
    client: ShopifyClient,
    since: Optional[datetime],
    max_pages: int,
    now: Optional[datetime],
) -> ShopifySyncResult:
    started = time.monotonic()
    result = ShopifySyncResult(incremental=since is not None)

    raw_orders = await client.list_orders(updated_at_min=since, max_pages=max_pages)
    result.fetched_count = len(raw_orders)

    orders, result.skipped = _decode(OrderPayload, raw_orders, shop, "order")

    # Orders first, then items; each batch commits on its own
    result.upserted = upsert_orders(db, shop, orders)
    result.line_items_upserted = upsert_order_items(db, orders)

    result.max_updated_at = _max_updated_at(orders)
    result.checkpoint = record_sync_checkpoint(db, shop, "orders_last_sync_at", now or utc_now())
    result.duration_seconds = round(time.monotonic() - started, 3)

    logger.info(
        f"[SHOPIFY_SYNC] {shop}: fetched={result.fetched_count} orders={result.upserted} "
        f"items={result.line_items_upserted} skipped={result.skipped} "
        f"incremental={result.incremental} checkpoint={result.checkpoint} "
        f"max_updated_at={result.max_updated_at} ({result.duration_seconds}s)"
    )
    return result


# =============================================================================
# ORDER SYNC
# =============================================================================

async def sync_orders(
    db: Session,
    shop: str,
    client: Optional[ShopifyClient] = None,
    now: Optional[datetime] = None,
) -> ShopifySyncResult:
    """Incremental order sync.

    WHAT:
        Fetches one page (250) of orders of any status, restricted to
        `updated_at_min` = stored checkpoint when one exists.

    Args:
        db: Database session
        shop: Shop domain
        client: Pre-built client (default: built from the stored credential)
        now: Checkpoint value to record (default: current UTC time)

    Raises:
        ValidationError: Shop not connected
        ShopifyAPIError: Shopify call failed after retries
        PersistenceError: Upsert failed (earlier batches stay committed)
    """
    client = _get_client(db, shop, client)
    status = get_sync_status(db, shop)
    since = status.orders_last_sync_at if status else None
    logger.info(f"[SHOPIFY_SYNC] Starting order sync for {shop} (since={since})")
    return await _pull_orders(db, shop, client, since, max_pages=1, now=now)


async def backfill_orders(
    db: Session,
    shop: str,
    client: Optional[ShopifyClient] = None,
    now: Optional[datetime] = None,
) -> ShopifySyncResult:
    """Full historical pull ignoring the checkpoint (first connection).

    Same upsert path as `sync_orders`, following pagination up to
    BACKFILL_MAX_PAGES pages. Records the checkpoint so later syncs are
    incremental.
    """
    client = _get_client(db, shop, client)
    logger.info(f"[SHOPIFY_SYNC] Starting order backfill for {shop}")
    return await _pull_orders(db, shop, client, None, max_pages=BACKFILL_MAX_PAGES, now=now)


# =============================================================================
# PRODUCT SYNC
# =============================================================================

async def sync_products(
    db: Session,
    shop: str,
    client: Optional[ShopifyClient] = None,
    now: Optional[datetime] = None,
) -> ShopifySyncResult:
    """Pull the product catalog with variants and upsert it."""
    started = time.monotonic()
    client = _get_client(db, shop, client)

    raw_products = await client.list_products(max_pages=BACKFILL_MAX_PAGES)
    products, skipped = _decode(ProductPayload, raw_products, shop, "product")

    result = ShopifySyncResult(fetched_count=len(raw_products), skipped=skipped)
    result.upserted = upsert_products(db, shop, products)
    result.checkpoint = record_sync_checkpoint(db, shop, "products_last_sync_at", now or utc_now())
    result.duration_seconds = round(time.monotonic() - started, 3)

    logger.info(
        f"[SHOPIFY_SYNC] {shop}: products fetched={result.fetched_count} "
        f"upserted={result.upserted} skipped={skipped} ({result.duration_seconds}s)"
    )
    return result
