"""Shopify synchronization endpoints.

WHAT:
    Thin HTTP wrappers for the Shopify sync services: incremental order sync,
    historical backfill and product catalog sync.

WHY:
    - Routers handle request parsing only
    - Business logic is reused by the HTTP calls and the cron scripts
    - Errors are SierreError subclasses rendered by the app-level handler

REFERENCES:
    - sierre/services/shopify_sync_service.py
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from sierre.database import get_db
from sierre.errors import SierreError, ValidationError
from sierre.schemas import BackfillResponse, ErrorResponse, ShopRequest, SyncResponse
from sierre.services.shopify_sync_service import backfill_orders, sync_orders, sync_products

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/integrations/shopify",
    tags=["Shopify Sync"],
    responses={
        400: {"model": ErrorResponse, "description": "Missing shop or shop not connected"},
        500: {"model": ErrorResponse, "description": "Shopify or database failure"},
    },
)


# =============================================================================
# Validation helper
# =============================================================================

def _require_shop(payload: Optional[ShopRequest]) -> str:
    """Return the shop from the body.

    Raises:
        ValidationError: 400 when the body or its `shop` is missing
    """
    shop = payload.shop.strip() if payload and payload.shop else ""
    if not shop:
        raise ValidationError("Missing shop")
    return shop


async def _run(label: str, shop: str, operation: Awaitable[Any]) -> Any:
    """Await a sync operation, turning unexpected failures into a 500 `{error}`."""
    try:
        return await operation
    except SierreError:
        raise
    except Exception as e:
        logger.exception(f"[SHOPIFY_SYNC] {label} failed for {shop}: {e}")
        raise SierreError(f"{label} failed: {e}") from e


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/sync", response_model=SyncResponse)
async def sync_shop_orders(
    payload: Optional[ShopRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Incremental order sync from the stored checkpoint."""
    shop = _require_shop(payload)
    result = await _run("Order sync", shop, sync_orders(db, shop))
    return SyncResponse(
        ok=True,
        count=result.fetched_count,
        upserted=result.upserted,
        skipped=result.skipped,
        checkpoint=result.checkpoint,
    )


@router.post("/backfill", response_model=BackfillResponse)
async def backfill_shop_orders(
    payload: Optional[ShopRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Full historical order pull (first connection)."""
    shop = _require_shop(payload)
    result = await _run("Backfill", shop, backfill_orders(db, shop))
    return BackfillResponse(ok=True, fetched=result.fetched_count, upserted=result.upserted)


@router.post("/sync-products", response_model=SyncResponse)
async def sync_shop_products(
    payload: Optional[ShopRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Product catalog and variant sync."""
    shop = _require_shop(payload)
    result = await _run("Product sync", shop, sync_products(db, shop))
    return SyncResponse(
        ok=True,
        count=result.fetched_count,
        upserted=result.upserted,
        skipped=result.skipped,
        checkpoint=result.checkpoint,
    )
