"""Typed Shopify payloads.

WHAT:
    Pydantic models for the order, product, inventory level and refund bodies
    Shopify sends (REST list responses and webhooks share the same shapes),
    plus `decode_webhook_payload` which picks the model for a webhook topic.

WHY:
    Decoding fails closed: a body missing its id, or carrying a non-numeric
    price, raises WebhookPayloadError instead of being written as nulls.
    Unknown fields are ignored so new Shopify fields never break ingestion.

REFERENCES:
    - Order: https://shopify.dev/docs/api/admin-rest/2024-10/resources/order
    - Webhook topics: https://shopify.dev/docs/api/webhooks
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import WebhookPayloadError


def _coerce_id(value: Any) -> str:
    """Shopify ids arrive as JSON numbers (REST) or strings; store them as str."""
    if isinstance(value, bool) or value is None or value == "":
        raise ValueError("missing Shopify id")
    if isinstance(value, (int, str)):
        return str(value)
    raise ValueError(f"invalid Shopify id: {value!r}")


ShopifyId = Annotated[str, BeforeValidator(_coerce_id)]


class ShopifyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# =============================================================================
# ORDERS
# =============================================================================

class CustomerRef(ShopifyPayload):
    id: Optional[ShopifyId] = None


class LineItemPayload(ShopifyPayload):
    id: ShopifyId
    product_id: Optional[ShopifyId] = None
    variant_id: Optional[ShopifyId] = None
    title: Optional[str] = None
    sku: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[Decimal] = None


class OrderPayload(ShopifyPayload):
    id: ShopifyId
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    currency: Optional[str] = None
    subtotal_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None
    total_discounts: Optional[Decimal] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    customer: Optional[CustomerRef] = None
    email: Optional[str] = None
    line_items: List[LineItemPayload] = []

    @model_validator(mode="before")
    @classmethod
    def _unwrap_order(cls, data: Any) -> Any:
        # Some webhook deliveries wrap the order: {"order": {...}}
        if isinstance(data, dict) and "id" not in data and isinstance(data.get("order"), dict):
            return data["order"]
        return data


# =============================================================================
# PRODUCTS & INVENTORY
# =============================================================================

class VariantPayload(ShopifyPayload):
    id: ShopifyId
    title: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    inventory_quantity: Optional[int] = None


class ProductPayload(ShopifyPayload):
    id: ShopifyId
    title: Optional[str] = None
    product_type: Optional[str] = None
    vendor: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    variants: List[VariantPayload] = []


class InventoryLevelPayload(ShopifyPayload):
    inventory_item_id: Optional[ShopifyId] = None
    location_id: Optional[ShopifyId] = None
    # Required: a level update without a quantity carries nothing to snapshot
    available: int
    updated_at: Optional[datetime] = None


# =============================================================================
# REFUNDS
# =============================================================================

class RefundTransaction(ShopifyPayload):
    kind: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None


class RefundLineItem(ShopifyPayload):
    subtotal: Optional[Decimal] = None


class OrderRef(ShopifyPayload):
    id: Optional[ShopifyId] = None


class RefundPayload(ShopifyPayload):
    id: ShopifyId
    order_id: Optional[ShopifyId] = None
    order: Optional[OrderRef] = None
    currency: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    transactions: List[RefundTransaction] = []
    refund_line_items: List[RefundLineItem] = []

    @model_validator(mode="after")
    def _require_order_id(self) -> "RefundPayload":
        if not self.order_id and self.order is not None and self.order.id:
            self.order_id = self.order.id
        if not self.order_id:
            raise ValueError("refund payload has no order id")
        return self

    def refund_amount(self) -> Decimal:
        """Amount of the first `refund` transaction, else summed line-item subtotals.

        Best-effort: a zero transaction amount also falls through to line items.
        """
        amount = Decimal("0")
        transaction = next((t for t in self.transactions if t.kind == "refund"), None)
        if transaction is not None and transaction.amount:
            amount = transaction.amount
        if not amount:
            amount = sum((li.subtotal or Decimal("0") for li in self.refund_line_items), Decimal("0"))
        return amount

    def refund_currency(self) -> Optional[str]:
        if self.currency:
            return self.currency
        transaction = next((t for t in self.transactions if t.kind == "refund"), None)
        return transaction.currency if transaction is not None else None


# =============================================================================
# TOPIC DISPATCH
# =============================================================================

WebhookPayload = Union[OrderPayload, ProductPayload, InventoryLevelPayload, RefundPayload]

TOPIC_MODELS = {
    "orders/create": OrderPayload,
    "orders/updated": OrderPayload,
    "products/update": ProductPayload,
    "inventory_levels/update": InventoryLevelPayload,
    "refunds/create": RefundPayload,
}


def decode_webhook_payload(topic: str, payload: Any) -> Optional[WebhookPayload]:
    """Decode a verified webhook body for its topic.

    Returns:
        The typed payload, or None for topics Sierre does not persist

    Raises:
        WebhookPayloadError: Body does not match the topic's shape
    """
    model = TOPIC_MODELS.get(topic)
    if model is None:
        return None
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise WebhookPayloadError(f"Malformed {topic} payload: {e.error_count()} error(s)") from e
