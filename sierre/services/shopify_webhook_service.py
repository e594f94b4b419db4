"""Shopify webhook ingestion.

WHAT:
    Verifies the HMAC of a webhook delivery, records it in the audit log,
    decodes the body for its topic and applies the same idempotent upserts as
    the REST sync.

WHY:
    Shopify retries any non-2xx delivery and eventually removes the
    subscription. Once a delivery is authentic it is always acknowledged:
    each topic handler runs in isolation and its failures are logged and
    reported, never propagated. Deliveries are at-least-once and unordered,
    so every handler is an upsert keyed on Shopify ids and tolerates missing
    parent rows.

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https#step-5-verify-the-webhook
    - sierre/routers/shopify_webhooks.py (HTTP endpoint)
    - sierre/services/shopify_persistence.py (upserts)
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..errors import SignatureError
from ..telemetry import capture_exception
from .shopify_persistence import (
    insert_inventory_snapshot,
    log_webhook,
    upsert_order_items,
    upsert_orders,
    upsert_products,
    upsert_refund,
)
from .webhook_payloads import (
    InventoryLevelPayload,
    OrderPayload,
    ProductPayload,
    RefundPayload,
    decode_webhook_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    """What happened to a verified delivery (the HTTP response is 200 either way)."""
    topic: Optional[str]
    shop: Optional[str]
    handled: bool = False
    error: Optional[str] = None


# =============================================================================
# HMAC VERIFICATION
# =============================================================================

def verify_webhook_signature(hmac_header: Optional[str], raw_body: bytes, secret: Optional[str]) -> bool:
    """Verify that a webhook request came from Shopify.

    WHAT: base64(HMAC-SHA256(secret, raw body)) compared in constant time
    WHY: The body must be the exact bytes received; re-serialized JSON never matches

    Returns:
        True if signature is valid; False on missing secret/header or mismatch
    """
    if not secret:
        logger.error("[SHOPIFY_WEBHOOK] SHOPIFY_API_SECRET not configured")
        return False

    if not hmac_header:
        logger.warning("[SHOPIFY_WEBHOOK] Missing HMAC header")
        return False

    computed = base64.b64encode(
        hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    ).decode("utf-8")

    is_valid = hmac.compare_digest(computed.encode("utf-8"), hmac_header.encode("utf-8"))
    if not is_valid:
        logger.warning("[SHOPIFY_WEBHOOK] Invalid HMAC signature")
    return is_valid


# =============================================================================
# TOPIC HANDLERS
# =============================================================================

def _handle_order(db: Session, shop: str, order: OrderPayload) -> None:
    upsert_orders(db, shop, [order])
    upsert_order_items(db, [order])


def _handle_product(db: Session, shop: str, product: ProductPayload) -> None:
    upsert_products(db, shop, [product])


def _handle_inventory_level(db: Session, shop: str, level: InventoryLevelPayload) -> None:
    insert_inventory_snapshot(db, shop, level)


def _handle_refund(db: Session, shop: str, refund: RefundPayload) -> None:
    row = upsert_refund(db, shop, refund)
    logger.info(f"[SHOPIFY_WEBHOOK] Refund {refund.id} on order {refund.order_id}: {row['amount']}")


TOPIC_HANDLERS: Dict[str, Callable[[Session, str, Any], None]] = {
    "orders/create": _handle_order,
    "orders/updated": _handle_order,
    "products/update": _handle_product,
    "inventory_levels/update": _handle_inventory_level,
    "refunds/create": _handle_refund,
}


# =============================================================================
# ENTRYPOINT
# =============================================================================

def handle_webhook(
    db: Session,
    *,
    topic: Optional[str],
    shop: Optional[str],
    raw_body: bytes,
    hmac_header: Optional[str],
    secret: Optional[str],
) -> WebhookOutcome:
    """Verify and ingest one webhook delivery.

    Raises:
        SignatureError: HMAC missing or invalid (nothing is parsed or written)
    """
    if not verify_webhook_signature(hmac_header, raw_body, secret):
        raise SignatureError("Invalid webhook signature")

    outcome = WebhookOutcome(topic=topic, shop=shop)

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning(f"[SHOPIFY_WEBHOOK] Non-JSON body for {topic} from {shop}")
        outcome.error = "invalid json"
        return outcome

    log_webhook(db, shop, topic, payload)

    handler = TOPIC_HANDLERS.get(topic or "")
    if handler is None:
        logger.info(f"[SHOPIFY_WEBHOOK] Acknowledged unhandled topic {topic} from {shop}")
        return outcome

    if not shop:
        logger.warning(f"[SHOPIFY_WEBHOOK] {topic} delivery without shop domain; not persisted")
        outcome.error = "missing shop"
        return outcome

    # One failing topic must never turn into a non-2xx for Shopify
    try:
        handler(db, shop, decode_webhook_payload(topic, payload))
    except Exception as e:
        db.rollback()
        logger.exception(f"[SHOPIFY_WEBHOOK] {topic} handler failed for {shop}: {e}")
        capture_exception(e, extra={"topic": topic, "shop": shop})
        outcome.error = str(e)
        return outcome

    outcome.handled = True
    logger.info(f"[SHOPIFY_WEBHOOK] Processed {topic} for {shop}")
    return outcome
