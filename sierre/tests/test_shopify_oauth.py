"""Tests for the Shopify OAuth flow.

WHAT:
    Service helpers (domain normalization, authorize URL, token exchange)
    and the /connect, /callback, /disconnect and /status endpoints.

WHY:
    The callback is public: it must refuse forged or replayed requests and
    always send the merchant back to the dashboard with a readable outcome.

REFERENCES:
    - sierre/services/shopify_oauth.py
    - sierre/routers/shopify_oauth.py
"""

import asyncio
import hashlib
import hmac
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from sierre.deps import Settings, get_settings
from sierre.errors import UpstreamError
from sierre.models import ShopCredential
from sierre.routers import shopify_oauth as oauth_router
from sierre.services.credential_service import get_access_token
from sierre.services.shopify_oauth import (
    build_authorize_url,
    exchange_code_for_token,
    normalize_shop_domain,
    validate_shop_domain,
)

from conftest import API_SECRET, SHOP

STATE = "nonce-123"


def signed_callback_params(secret: str = API_SECRET, **overrides) -> dict:
    params = {"code": "auth-code", "shop": SHOP, "state": STATE, "timestamp": "1728000000"}
    params.update(overrides)
    message = "&".join(f"{k}={params[k]}" for k in sorted(params))
    params["hmac"] = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return params


def redirect_query(response) -> dict:
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "http://dashboard.test/dashboard"
    return {key: values[0] for key, values in parse_qs(location.query).items()}


@pytest.fixture
def fake_exchange(monkeypatch):
    calls = []

    async def exchange(shop, code, settings):
        calls.append((shop, code))
        return {"access_token": "shpat_new", "scope": "read_orders,read_products"}

    monkeypatch.setattr(oauth_router, "exchange_code_for_token", exchange)
    return calls


# =============================================================================
# Service helpers
# =============================================================================

class TestShopDomain:
    @pytest.mark.parametrize("raw", [
        "teststore",
        "TestStore.myshopify.com",
        "https://teststore.myshopify.com/admin",
        "  teststore.myshopify.com  ",
    ])
    def test_normalizes_to_myshopify_domain(self, raw):
        assert normalize_shop_domain(raw) == SHOP

    @pytest.mark.parametrize("domain,valid", [
        (SHOP, True),
        ("my-store-1.myshopify.com", True),
        ("ab.myshopify.com", False),
        ("-store.myshopify.com", False),
        ("evil.com", False),
        ("store.myshopify.com.evil.com", False),
    ])
    def test_validate_shop_domain(self, domain, valid):
        assert validate_shop_domain(domain) is valid


class TestAuthorizeUrl:
    def test_contains_app_params_and_state(self):
        settings = Settings(
            SHOPIFY_API_KEY="key-1",
            SHOPIFY_API_SECRET="secret",
            SHOPIFY_SCOPES="read_orders,read_products",
            SHOPIFY_REDIRECT_URL="https://api.example.com/integrations/shopify/callback",
        )

        url = urlparse(build_authorize_url(SHOP, STATE, settings))
        params = {k: v[0] for k, v in parse_qs(url.query).items()}

        assert url.netloc == SHOP
        assert url.path == "/admin/oauth/authorize"
        assert params == {
            "client_id": "key-1",
            "scope": "read_orders,read_products",
            "redirect_uri": "https://api.example.com/integrations/shopify/callback",
            "state": STATE,
            "access_mode": "offline",
        }


class TestTokenExchange:
    SETTINGS = Settings(SHOPIFY_API_KEY="key-1", SHOPIFY_API_SECRET="secret")

    def _exchange(self, handler):
        return asyncio.run(
            exchange_code_for_token(SHOP, "auth-code", self.SETTINGS, transport=httpx.MockTransport(handler))
        )

    def test_success_returns_token_and_scope(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"access_token": "shpat_abc", "scope": "read_orders"})

        assert self._exchange(handler) == {"access_token": "shpat_abc", "scope": "read_orders"}
        assert str(seen[0].url) == f"https://{SHOP}/admin/oauth/access_token"

    def test_non_2xx_raises_upstream_error(self):
        with pytest.raises(UpstreamError):
            self._exchange(lambda request: httpx.Response(400, json={"error": "invalid_request"}))

    def test_missing_token_raises_upstream_error(self):
        with pytest.raises(UpstreamError) as exc_info:
            self._exchange(lambda request: httpx.Response(200, json={"scope": "read_orders"}))
        assert exc_info.value.message == "No access token received"


# =============================================================================
# /connect
# =============================================================================

class TestConnect:
    def test_requires_authentication(self, client):
        response = client.get("/integrations/shopify/connect", params={"shop": "teststore"}, follow_redirects=False)
        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    def test_redirects_to_consent_and_sets_state_cookie(self, client, auth_headers):
        response = client.get(
            "/integrations/shopify/connect",
            params={"shop": "teststore"},
            headers=auth_headers,
            follow_redirects=False,
        )

        assert response.status_code == 307
        location = urlparse(response.headers["location"])
        assert location.netloc == SHOP
        state = parse_qs(location.query)["state"][0]
        set_cookie = response.headers["set-cookie"]
        assert f"{oauth_router.STATE_COOKIE}={state}" in set_cookie
        assert "HttpOnly" in set_cookie

    def test_invalid_shop_returns_400(self, client, auth_headers):
        response = client.get(
            "/integrations/shopify/connect",
            params={"shop": "not a shop!"},
            headers=auth_headers,
            follow_redirects=False,
        )
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid Shopify store domain")

    def test_unconfigured_app_returns_503(self, client, auth_headers, monkeypatch):
        monkeypatch.delenv("SHOPIFY_API_KEY", raising=False)
        get_settings.cache_clear()

        response = client.get(
            "/integrations/shopify/connect",
            params={"shop": "teststore"},
            headers=auth_headers,
            follow_redirects=False,
        )

        assert response.status_code == 503
        assert "SHOPIFY_API_KEY" in response.json()["error"]


# =============================================================================
# /callback
# =============================================================================

class TestCallback:
    def test_success_stores_token_and_redirects(self, client, test_db_session, fake_exchange, test_user_token):
        client.cookies.set(oauth_router.STATE_COOKIE, STATE)
        client.cookies.set("access_token", test_user_token)

        response = client.get(
            "/integrations/shopify/callback", params=signed_callback_params(), follow_redirects=False
        )

        assert response.status_code == 307
        assert redirect_query(response) == {"connected": "shopify", "shop": SHOP}
        assert fake_exchange == [(SHOP, "auth-code")]
        assert get_access_token(test_db_session, SHOP) == "shpat_new"
        credential = test_db_session.query(ShopCredential).one()
        assert credential.access_token != "shpat_new"
        assert credential.installed_by == "test-user-123"

    def test_shopify_error_is_forwarded(self, client, fake_exchange):
        response = client.get(
            "/integrations/shopify/callback",
            params={"error": "access_denied", "error_description": "The merchant declined"},
            follow_redirects=False,
        )

        assert redirect_query(response) == {"error": "oauth_error", "details": "The merchant declined"}
        assert fake_exchange == []

    def test_missing_parameters(self, client, fake_exchange):
        response = client.get("/integrations/shopify/callback", params={"shop": SHOP}, follow_redirects=False)
        assert redirect_query(response) == {"error": "invalid_callback", "details": "missing_parameters"}

    def test_state_mismatch_is_rejected(self, client, test_db_session, fake_exchange):
        client.cookies.set(oauth_router.STATE_COOKIE, "some-other-state")

        response = client.get(
            "/integrations/shopify/callback", params=signed_callback_params(), follow_redirects=False
        )

        assert redirect_query(response) == {"error": "invalid_callback", "details": "state_mismatch"}
        assert fake_exchange == []
        assert test_db_session.query(ShopCredential).count() == 0

    def test_missing_state_cookie_is_rejected(self, client, fake_exchange):
        response = client.get(
            "/integrations/shopify/callback", params=signed_callback_params(), follow_redirects=False
        )
        assert redirect_query(response)["details"] == "state_mismatch"

    def test_bad_hmac_is_rejected(self, client, test_db_session, fake_exchange):
        client.cookies.set(oauth_router.STATE_COOKIE, STATE)

        response = client.get(
            "/integrations/shopify/callback",
            params=signed_callback_params(secret="forged"),
            follow_redirects=False,
        )

        assert redirect_query(response) == {"error": "invalid_callback", "details": "invalid_hmac"}
        assert fake_exchange == []
        assert test_db_session.query(ShopCredential).count() == 0

    def test_exchange_failure_redirects_with_connection_failed(self, client, monkeypatch):
        async def failing(shop, code, settings):
            raise UpstreamError("Token exchange failed with status 400")

        monkeypatch.setattr(oauth_router, "exchange_code_for_token", failing)
        client.cookies.set(oauth_router.STATE_COOKIE, STATE)

        response = client.get(
            "/integrations/shopify/callback", params=signed_callback_params(), follow_redirects=False
        )

        assert redirect_query(response) == {
            "error": "connection_failed",
            "details": "Token exchange failed with status 400",
        }

    def test_registers_webhooks_when_base_url_configured(self, client, fake_exchange, monkeypatch):
        registered = []

        class FakeClient:
            def __init__(self, shop, token, api_version=None):
                self.shop = shop

            async def register_default_webhooks(self, address):
                registered.append((self.shop, address))
                return {"orders/create": True}

        monkeypatch.setenv("SHOPIFY_WEBHOOK_BASE_URL", "https://hooks.example.com/")
        get_settings.cache_clear()
        monkeypatch.setattr(oauth_router, "ShopifyClient", FakeClient)
        client.cookies.set(oauth_router.STATE_COOKIE, STATE)

        response = client.get(
            "/integrations/shopify/callback", params=signed_callback_params(), follow_redirects=False
        )

        assert redirect_query(response)["connected"] == "shopify"
        assert registered == [(SHOP, "https://hooks.example.com/integrations/shopify/webhooks")]


# =============================================================================
# /disconnect and /status
# =============================================================================

class TestConnectionManagement:
    def test_disconnect_requires_authentication(self, client, connected_shop):
        response = client.post("/integrations/shopify/disconnect", json={"shop": SHOP})
        assert response.status_code == 401

    def test_disconnect_removes_credential(self, client, auth_headers, connected_shop, test_db_session):
        response = client.post("/integrations/shopify/disconnect", json={"shop": SHOP}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "shop": SHOP}
        assert get_access_token(test_db_session, SHOP) is None

    def test_status_for_connected_shop(self, client, connected_shop):
        body = client.get("/integrations/shopify/status", params={"shop": SHOP}).json()

        assert body["shop"] == SHOP
        assert body["connected"] is True
        assert body["scope"] == "read_orders"
        assert body["sync"] is None

    def test_status_for_unknown_shop(self, client):
        body = client.get("/integrations/shopify/status", params={"shop": "nobody"}).json()

        assert body["shop"] == "nobody.myshopify.com"
        assert body["connected"] is False

    def test_status_without_shop_returns_400(self, client):
        response = client.get("/integrations/shopify/status")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing shop"}
