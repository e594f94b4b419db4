"""Shopify OAuth 2.0 flow endpoints.

WHAT:
    Implements the authorization flow for merchant-initiated store
    connections, plus disconnect and connection status:
    - GET  /connect     → redirect to the shop's consent screen
    - GET  /callback    → verify, exchange code, store token, register webhooks
    - POST /disconnect  → drop token and sync checkpoints
    - GET  /status      → connection and sync state

WHY:
    Every Admin API call needs the shop's offline token. The callback is
    reachable by anyone, so it checks the state cookie set by /connect
    (CSRF) and Shopify's HMAC over the query string before exchanging the
    code. All callback failures redirect back to the dashboard with an error
    code instead of rendering a JSON error in the merchant's browser.

REFERENCES:
    - Shopify OAuth: https://shopify.dev/docs/apps/auth/oauth
    - sierre/services/shopify_oauth.py (URL building, HMAC, token exchange)
    - sierre/services/credential_service.py (encrypted token storage)
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import RedirectResponse
from jose import JWTError
from sqlalchemy.orm import Session

from sierre.database import get_db
from sierre.deps import CurrentUser, Settings, get_current_user, get_settings
from sierre.errors import PersistenceError, UpstreamError, ValidationError
from sierre.schemas import ConnectionStatusResponse, DisconnectResponse, ErrorResponse, ShopRequest, SyncStatusResponse
from sierre.security import decode_token
from sierre.services.credential_service import delete_shop_credential, get_shop_credential, save_shop_credential
from sierre.services.shopify_client import ShopifyClient
from sierre.services.shopify_oauth import (
    build_authorize_url,
    exchange_code_for_token,
    generate_state,
    normalize_shop_domain,
    validate_shop_domain,
    verify_oauth_hmac,
)
from sierre.services.shopify_persistence import get_sync_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/shopify", tags=["Shopify OAuth"])

STATE_COOKIE = "shopify_oauth_state"
STATE_COOKIE_MAX_AGE = 600  # Seconds the merchant has to approve the install
WEBHOOK_PATH = "/integrations/shopify/webhooks"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _dashboard_redirect(settings: Settings, **params: str) -> RedirectResponse:
    url = f"{settings.APP_URL.rstrip('/')}/dashboard?{urlencode(params)}"
    response = RedirectResponse(url=url)
    response.delete_cookie(STATE_COOKIE)
    return response


def _callback_error(settings: Settings, error: str, details: str) -> RedirectResponse:
    logger.error(f"[SHOPIFY_OAUTH] Callback failed: {error} ({details})")
    return _dashboard_redirect(settings, error=error, details=details)


def _require_valid_shop(shop: Optional[str]) -> str:
    """Normalize a user-supplied shop and reject anything not *.myshopify.com.

    Raises:
        ValidationError: 400 on missing or malformed shop
    """
    if not shop or not shop.strip():
        raise ValidationError("Missing shop")
    shop_domain = normalize_shop_domain(shop)
    if not validate_shop_domain(shop_domain):
        raise ValidationError(f"Invalid Shopify store domain: {shop_domain}. Expected format: mystore.myshopify.com")
    return shop_domain


def _installing_user(request: Request) -> Optional[str]:
    """User id from the session cookie, if the browser still carries one."""
    raw = request.cookies.get("access_token")
    if not raw:
        return None
    token = raw[len("Bearer "):] if raw.startswith("Bearer ") else raw
    try:
        return decode_token(token).get("sub")
    except JWTError:
        return None


async def _register_webhooks(shop: str, access_token: str, settings: Settings) -> None:
    """Subscribe the default topics. Best effort: failures never block the install."""
    if not settings.SHOPIFY_WEBHOOK_BASE_URL:
        logger.info(f"[SHOPIFY_OAUTH] SHOPIFY_WEBHOOK_BASE_URL not set; skipping webhook registration for {shop}")
        return
    address = f"{settings.SHOPIFY_WEBHOOK_BASE_URL.rstrip('/')}{WEBHOOK_PATH}"
    client = ShopifyClient(shop, access_token, api_version=settings.SHOPIFY_API_VERSION)
    results = await client.register_default_webhooks(address)
    failed = [topic for topic, ok in results.items() if not ok]
    if failed:
        logger.warning(f"[SHOPIFY_OAUTH] Webhook registration failed for {shop}: {failed}")


# =============================================================================
# OAUTH ENDPOINTS
# =============================================================================

@router.get("/connect", responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}})
async def shopify_connect(
    request: Request,
    shop: Optional[str] = Query(default=None, description="Shopify store domain (e.g. 'mystore' or 'mystore.myshopify.com')"),
    current_user: CurrentUser = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    """Redirect the merchant to Shopify's consent screen.

    WHAT:
        Validates the shop, stores a random state in a short-lived httponly
        cookie and redirects to the per-shop authorize URL.
    """
    settings.require_shopify_app()
    shop_domain = _require_valid_shop(shop)

    state = generate_state()
    auth_url = build_authorize_url(shop_domain, state, settings)

    logger.info(f"[SHOPIFY_OAUTH] Redirecting user {current_user.id} to Shopify consent for {shop_domain}")

    response = RedirectResponse(url=auth_url)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="lax",
    )
    return response


@router.get("/callback")
async def shopify_callback(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Handle Shopify's redirect after the merchant approves (or declines).

    WHAT:
        1. Surface Shopify-side errors (merchant declined)
        2. Require code, shop and state; state must match the cookie
        3. Verify the HMAC over the query string
        4. Exchange the code and store the encrypted token
        5. Register default webhooks (best effort)
    """
    params = dict(request.query_params)

    if params.get("error"):
        return _callback_error(
            settings, "oauth_error", params.get("error_description") or params["error"]
        )

    code = params.get("code")
    shop = params.get("shop")
    state = params.get("state")
    if not code or not shop or not state:
        return _callback_error(settings, "invalid_callback", "missing_parameters")

    shop_domain = normalize_shop_domain(shop)
    if not validate_shop_domain(shop_domain):
        return _callback_error(settings, "invalid_callback", "invalid_shop")

    expected_state = request.cookies.get(STATE_COOKIE)
    if not expected_state or expected_state != state:
        return _callback_error(settings, "invalid_callback", "state_mismatch")

    if not verify_oauth_hmac(params, settings.SHOPIFY_API_SECRET):
        return _callback_error(settings, "invalid_callback", "invalid_hmac")

    try:
        token = await exchange_code_for_token(shop_domain, code, settings)
        save_shop_credential(
            db,
            shop_domain,
            access_token=token["access_token"],
            scope=token.get("scope"),
            installed_by=_installing_user(request),
        )
    except (UpstreamError, PersistenceError) as e:
        return _callback_error(settings, "connection_failed", e.message)

    await _register_webhooks(shop_domain, token["access_token"], settings)

    logger.info(f"[SHOPIFY_OAUTH] Connected {shop_domain}")
    return _dashboard_redirect(settings, connected="shopify", shop=shop_domain)


# =============================================================================
# CONNECTION MANAGEMENT
# =============================================================================

@router.post("/disconnect", response_model=DisconnectResponse, responses={400: {"model": ErrorResponse}})
async def shopify_disconnect(
    payload: Optional[ShopRequest] = Body(default=None),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete the shop's token and sync checkpoints. Mirrored data is kept."""
    shop_domain = _require_valid_shop(payload.shop if payload else None)
    delete_shop_credential(db, shop_domain)
    logger.info(f"[SHOPIFY_OAUTH] User {current_user.id} disconnected {shop_domain}")
    return DisconnectResponse(ok=True, shop=shop_domain)


@router.get("/status", response_model=ConnectionStatusResponse, responses={400: {"model": ErrorResponse}})
async def shopify_status(
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    db: Session = Depends(get_db),
):
    """Whether the shop is connected, and its sync checkpoints."""
    shop_domain = _require_valid_shop(shop)
    credential = get_shop_credential(db, shop_domain)
    status = get_sync_status(db, shop_domain)
    return ConnectionStatusResponse(
        shop=shop_domain,
        connected=credential is not None,
        connected_at=credential.connected_at if credential else None,
        scope=credential.scope if credential else None,
        sync=SyncStatusResponse.model_validate(status) if status else None,
    )
