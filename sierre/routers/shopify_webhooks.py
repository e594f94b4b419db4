"""Shopify webhook endpoint.

WHAT:
    Single receiver for every subscribed topic (orders/create, orders/updated,
    refunds/create, products/update, inventory_levels/update). Routing is by
    the X-Shopify-Topic header.

WHY:
    - The HMAC covers the exact bytes Shopify sent, so the raw body is read
      before any JSON parsing
    - A bad signature is the only non-2xx answer; any authentic delivery is
      acknowledged with 200 so Shopify never retries or unsubscribes

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https
    - sierre/services/shopify_webhook_service.py (verification + topic handlers)
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from sierre.database import get_db
from sierre.deps import Settings, get_settings
from sierre.schemas import ErrorResponse, WebhookAck
from sierre.services.shopify_webhook_service import handle_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/shopify", tags=["Shopify Webhooks"])


@router.post(
    "/webhooks",
    response_model=WebhookAck,
    responses={401: {"model": ErrorResponse, "description": "Invalid webhook signature"}},
)
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify and ingest one Shopify webhook delivery.

    Raises:
        SignatureError: 401 when X-Shopify-Hmac-Sha256 is missing or wrong
    """
    raw_body = await request.body()
    topic = request.headers.get("X-Shopify-Topic")
    shop = request.headers.get("X-Shopify-Shop-Domain")

    logger.info(f"[SHOPIFY_WEBHOOK] Received {topic} from {shop} ({len(raw_body)} bytes)")

    handle_webhook(
        db,
        topic=topic,
        shop=shop,
        raw_body=raw_body,
        hmac_header=request.headers.get("X-Shopify-Hmac-Sha256"),
        secret=settings.SHOPIFY_API_SECRET,
    )
    return WebhookAck(ok=True, topic=topic, shop=shop)
