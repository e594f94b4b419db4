"""Shopify Admin REST API client.

WHAT:
    Wrapper for the Shopify Admin REST API with:
    - Access-token authentication (offline tokens from OAuth)
    - Retry on 429 honoring Retry-After, scaled by attempt number
    - Linear backoff (attempt x 500ms) for every other failure
    - Cursor pagination through the `Link` header

WHY:
    The sync engine and OAuth callback are the only callers; keeping retry
    policy here means neither has to think about Shopify's leaky-bucket limits.
    Retries block the calling request (there is no job queue).

REFERENCES:
    - Shopify REST Admin API: https://shopify.dev/docs/api/admin-rest
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
    - Pagination: https://shopify.dev/docs/api/usage/pagination-rest
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx

from ..errors import RateLimited, ShopifyAPIError, ShopifyNetworkError
from ..utils.dates import to_shopify_timestamp

logger = logging.getLogger(__name__)

# Pinned Admin API version (overridable through Settings.SHOPIFY_API_VERSION)
DEFAULT_API_VERSION = "2024-10"

# Retries after the first attempt, so at most MAX_RETRIES + 1 calls
MAX_RETRIES = 3
# Linear backoff unit for non-429 failures
TRANSIENT_BACKOFF_SECONDS = 0.5
# Used when a 429 carries no (or an unparseable) Retry-After header
DEFAULT_RETRY_AFTER_SECONDS = 1.0

PAGE_SIZE = 250

# Topics every connected shop is subscribed to after OAuth
DEFAULT_WEBHOOK_TOPICS = [
    "orders/create",
    "orders/updated",
    "refunds/create",
    "products/update",
    "inventory_levels/update",
]

Sleep = Callable[[float], Awaitable[None]]


def _parse_retry_after(value: Optional[str]) -> float:
    try:
        return float(value) if value else DEFAULT_RETRY_AFTER_SECONDS
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def _next_page_info(response: httpx.Response) -> Optional[str]:
    """Extract the `page_info` cursor from a `Link: <...>; rel="next"` header."""
    next_url = response.links.get("next", {}).get("url")
    if not next_url:
        return None
    values = parse_qs(urlparse(next_url).query).get("page_info")
    return values[0] if values else None


class ShopifyClient:
    """REST client for one shop.

    Usage:
        client = ShopifyClient(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        orders = await client.list_orders(updated_at_min=checkpoint)
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleep] = None,
        timeout: float = 30.0,
    ):
        """Initialize Shopify client.

        Args:
            shop_domain: Shopify store domain (e.g., "mystore.myshopify.com")
            access_token: Offline Admin API access token
            api_version: API version (default: DEFAULT_API_VERSION)
            transport: httpx transport override (tests use httpx.MockTransport)
            sleep: Awaitable sleep used for backoff (tests record instead of waiting)
        """
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version or DEFAULT_API_VERSION
        self.base_url = f"https://{shop_domain}/admin/api/{self.api_version}"
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._timeout = timeout

    async def _send(
        self,
        path: str,
        method: str,
        body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
        retries: int,
    ) -> Tuple[Dict[str, Any], httpx.Response]:
        """Run one logical request through the retry policy.

        Raises:
            RateLimited: Every attempt answered 429
            ShopifyAPIError / ShopifyNetworkError: Last failure once retries are exhausted
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        last_error: Optional[ShopifyAPIError] = None

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(retries + 1):
                try:
                    response = await client.request(method, url, params=params, json=body, headers=headers)
                except httpx.RequestError as e:
                    last_error = ShopifyNetworkError(f"Shopify request failed for {path}: {e}")
                    logger.warning(
                        f"[SHOPIFY_CLIENT] Request error on {method} {path}: {e} "
                        f"(attempt {attempt + 1}/{retries + 1})"
                    )
                else:
                    if response.status_code == 429:
                        last_error = RateLimited(f"Shopify rate limit exceeded for {path}", upstream_status=429)
                        if attempt < retries:
                            delay = (attempt + 1) * _parse_retry_after(response.headers.get("Retry-After"))
                            logger.warning(
                                f"[SHOPIFY_CLIENT] Rate limited on {path}, waiting {delay}s "
                                f"(attempt {attempt + 1}/{retries + 1})"
                            )
                            await self._sleep(delay)
                        continue

                    if response.is_success:
                        if not response.content:
                            return {}, response
                        try:
                            return response.json(), response
                        except ValueError:
                            last_error = ShopifyAPIError(
                                f"Malformed JSON from Shopify for {path}",
                                upstream_status=response.status_code,
                            )
                    else:
                        errors = _extract_errors(response)
                        last_error = ShopifyAPIError(
                            f"Shopify API error {response.status_code} for {path}: {errors or response.reason_phrase}",
                            upstream_status=response.status_code,
                            errors=errors,
                        )
                    logger.warning(
                        f"[SHOPIFY_CLIENT] {last_error} (attempt {attempt + 1}/{retries + 1})"
                    )

                if attempt < retries:
                    await self._sleep((attempt + 1) * TRANSIENT_BACKOFF_SECONDS)

        raise last_error

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        retries: int = MAX_RETRIES,
    ) -> Dict[str, Any]:
        """Call an Admin REST endpoint and return its decoded JSON body.

        Args:
            path: Path relative to /admin/api/{version}/ (e.g. "orders.json")
            method: HTTP method
            body: JSON body for POST/PUT
            params: Query parameters
            retries: Retries after the first attempt

        Raises:
            ShopifyAPIError: If the call fails after all retries
        """
        data, _ = await self._send(path, method, body, params, retries)
        return data

    # =========================================================================
    # LIST ENDPOINTS
    # =========================================================================

    async def _list(
        self,
        path: str,
        key: str,
        params: Dict[str, Any],
        max_pages: int,
    ) -> List[Dict[str, Any]]:
        """Fetch up to `max_pages` pages of a list endpoint."""
        items: List[Dict[str, Any]] = []
        page_params = params
        for page in range(max_pages):
            data, response = await self._send(path, "GET", None, page_params, MAX_RETRIES)
            items.extend(data.get(key) or [])
            cursor = _next_page_info(response)
            if not cursor:
                break
            # Shopify rejects filters alongside page_info; only limit may repeat
            page_params = {"limit": params.get("limit", PAGE_SIZE), "page_info": cursor}
        else:
            logger.info(f"[SHOPIFY_CLIENT] Stopped {path} after {max_pages} pages for {self.shop_domain}")
        return items

    async def list_orders(
        self,
        updated_at_min: Optional[datetime] = None,
        limit: int = PAGE_SIZE,
        max_pages: int = 1,
    ) -> List[Dict[str, Any]]:
        """List orders of any status, optionally only those updated since a checkpoint."""
        params: Dict[str, Any] = {"status": "any", "limit": limit}
        if updated_at_min is not None:
            params["updated_at_min"] = to_shopify_timestamp(updated_at_min)
        return await self._list("orders.json", "orders", params, max_pages)

    async def list_products(self, limit: int = PAGE_SIZE, max_pages: int = 1) -> List[Dict[str, Any]]:
        return await self._list("products.json", "products", {"limit": limit}, max_pages)

    async def list_customers(
        self,
        created_at_min: Optional[datetime] = None,
        limit: int = PAGE_SIZE,
        max_pages: int = 1,
    ) -> List[Dict[str, Any]]:
        """List customers, optionally only those created since `created_at_min`."""
        params: Dict[str, Any] = {"limit": limit}
        if created_at_min is not None:
            params["created_at_min"] = to_shopify_timestamp(created_at_min)
        return await self._list("customers.json", "customers", params, max_pages)

    # =========================================================================
    # WEBHOOK REGISTRATION
    # =========================================================================

    async def register_default_webhooks(self, address: str) -> Dict[str, bool]:
        """Subscribe the shop to DEFAULT_WEBHOOK_TOPICS.

        WHAT: POST webhooks.json once per topic
        WHY: Push updates keep orders/products fresh between syncs

        Failures (including 422 "address already taken" on reconnect) are
        logged and reported as False; they never raise.

        Returns:
            Mapping topic -> registered
        """
        results: Dict[str, bool] = {}
        for topic in DEFAULT_WEBHOOK_TOPICS:
            payload = {"webhook": {"topic": topic, "address": address, "format": "json"}}
            try:
                await self.request("webhooks.json", method="POST", body=payload, retries=0)
                results[topic] = True
                logger.info(f"[SHOPIFY_CLIENT] Registered webhook {topic} for {self.shop_domain}")
            except ShopifyAPIError as e:
                results[topic] = False
                logger.warning(f"[SHOPIFY_CLIENT] Webhook {topic} not registered for {self.shop_domain}: {e}")
        return results


def _extract_errors(response: httpx.Response) -> List[Any]:
    """Best-effort read of Shopify's `{"errors": ...}` body."""
    try:
        payload = response.json()
    except ValueError:
        return []
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if errors is None:
        return []
    return errors if isinstance(errors, list) else [errors]
