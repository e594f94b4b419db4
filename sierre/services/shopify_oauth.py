"""Shopify OAuth helpers.

WHAT:
    Shop domain normalization, authorize URL construction, callback HMAC
    verification and the code → offline token exchange.

WHY:
    Kept out of the router so the connect/callback endpoints stay thin and the
    crypto/URL logic is testable without a FastAPI app.

REFERENCES:
    - Shopify OAuth: https://shopify.dev/docs/apps/auth/oauth
    - Callback HMAC: https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant#step-2-verify-the-installation-request
    - sierre/routers/shopify_oauth.py (consumer)
"""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode, urlparse

import httpx

from ..deps import Settings
from ..errors import UpstreamError

logger = logging.getLogger(__name__)

SHOP_DOMAIN_PATTERN = re.compile(r"^[a-z0-9][a-z0-9\-]{1,98}[a-z0-9]\.myshopify\.com$")


def normalize_shop_domain(shop_input: str) -> str:
    """Normalize shop domain to myshopify.com format.

    Examples:
        'myshop' -> 'myshop.myshopify.com'
        'myshop.myshopify.com' -> 'myshop.myshopify.com'
        'https://myshop.myshopify.com/admin' -> 'myshop.myshopify.com'
    """
    shop = shop_input.strip().lower()

    if shop.startswith("http://") or shop.startswith("https://"):
        parsed = urlparse(shop)
        shop = parsed.netloc or parsed.path.split("/")[0]

    shop = shop.split("/")[0]

    if not shop.endswith(".myshopify.com"):
        shop = f"{shop}.myshopify.com"

    return shop


def validate_shop_domain(shop_domain: str) -> bool:
    """Check the domain is `{store-name}.myshopify.com` (3-100 char store name)."""
    return bool(SHOP_DOMAIN_PATTERN.match(shop_domain.lower()))


def generate_state() -> str:
    """Random, URL-safe CSRF token for the authorize round trip."""
    return secrets.token_urlsafe(32)


def build_authorize_url(shop: str, state: str, settings: Settings) -> str:
    """Build the per-shop consent URL.

    `access_mode=offline` asks for a non-expiring token so syncs keep working
    after the merchant's session ends.
    """
    params = {
        "client_id": settings.SHOPIFY_API_KEY,
        "scope": settings.SHOPIFY_SCOPES,
        "redirect_uri": settings.SHOPIFY_REDIRECT_URL,
        "state": state,
        "access_mode": "offline",
    }
    return f"https://{shop}/admin/oauth/authorize?{urlencode(params)}"


def verify_oauth_hmac(params: Mapping[str, Any], secret: Optional[str]) -> bool:
    """Verify the `hmac` query parameter Shopify appends to the callback.

    WHAT:
        Hex HMAC-SHA256 over the remaining params sorted by key and joined as
        `key=value&key=value`, compared in constant time.
    WHY:
        Proves the callback (code, shop, timestamp) was issued by Shopify and
        not forged by whoever hits the redirect URI.

    Returns:
        False on missing secret/hmac or mismatch; never raises.
    """
    provided = params.get("hmac")
    if not secret or not provided:
        logger.warning("[SHOPIFY_OAUTH] Missing secret or hmac on callback")
        return False

    message = "&".join(
        f"{key}={params[key]}"
        for key in sorted(params)
        if key not in ("hmac", "signature")
    )
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, str(provided))


async def exchange_code_for_token(
    shop: str,
    code: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, str]:
    """Exchange the authorization code for an offline access token.

    Returns:
        {"access_token": ..., "scope": ...}

    Raises:
        UpstreamError: Non-2xx response, transport failure, or no `access_token` in the body
    """
    url = f"https://{shop}/admin/oauth/access_token"
    payload = {
        "client_id": settings.SHOPIFY_API_KEY,
        "client_secret": settings.SHOPIFY_API_SECRET,
        "code": code,
    }

    try:
        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            response = await client.post(url, json=payload)
    except httpx.RequestError as e:
        logger.error(f"[SHOPIFY_OAUTH] Token exchange request failed for {shop}: {e}")
        raise UpstreamError(f"Token exchange failed: {e}") from e

    if not response.is_success:
        logger.error(f"[SHOPIFY_OAUTH] Token exchange failed for {shop}: {response.status_code} {response.text[:200]}")
        raise UpstreamError(f"Token exchange failed with status {response.status_code}")

    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamError("Token exchange returned malformed JSON") from e

    access_token = data.get("access_token") if isinstance(data, dict) else None
    if not access_token:
        raise UpstreamError("No access token received")

    logger.info(f"[SHOPIFY_OAUTH] Token exchange successful for {shop} (scopes: {data.get('scope', '')})")
    return {"access_token": access_token, "scope": data.get("scope", "")}
