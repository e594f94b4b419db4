"""Pytest configuration for Sierre integration tests

WHAT: Provides shared fixtures for HTTP endpoint and service-level tests
WHY: Ensures consistent test setup, database isolation, and signed webhook helpers
REFERENCES:
    - sierre/main.py: FastAPI application
    - sierre/database.py: Database configuration
    - sierre/deps.py: Settings and authentication
"""

import base64
import hashlib
import hmac
import json
import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment (before any sierre import)
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
# Must be URL-safe base64-encoded 32-byte string (sierre.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-api-secret")
os.environ.setdefault("SHOPIFY_REDIRECT_URL", "http://testserver/integrations/shopify/callback")
os.environ.setdefault("APP_URL", "http://dashboard.test")

SHOP = "teststore.myshopify.com"
API_SECRET = os.environ["SHOPIFY_API_SECRET"]


# ============================================================================
# Settings
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop the cached Settings so env changes made by a test are picked up."""
    from sierre.deps import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine shared across threads."""
    # StaticPool: TestClient runs sync endpoints in a worker thread
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from sierre.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )

    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from sierre.main import create_app

    test_app = create_app()

    # Override database dependency
    from sierre.database import get_db

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def test_user_token():
    """Generate test JWT token."""
    from sierre.security import create_access_token

    return create_access_token("test-user-123", expires_minutes=60)


@pytest.fixture
def auth_headers(test_user_token):
    """Standard auth headers for requests."""
    return {
        "Authorization": f"Bearer {test_user_token}",
        "Content-Type": "application/json"
    }


# ============================================================================
# Shopify Fixtures
# ============================================================================

def sign_webhook(raw_body: bytes, secret: str = API_SECRET) -> str:
    """base64 HMAC-SHA256 as Shopify computes it for X-Shopify-Hmac-Sha256."""
    return base64.b64encode(hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()).decode("utf-8")


def webhook_headers(raw_body: bytes, topic: str, shop: str = SHOP, secret: str = API_SECRET) -> dict:
    return {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "X-Shopify-Hmac-Sha256": sign_webhook(raw_body, secret),
    }


def make_order(order_id=1001, total="100.00", updated_at="2024-10-01T12:00:00Z", created_at=None, **extra) -> dict:
    """Minimal Shopify order as returned by orders.json and orders/* webhooks."""
    order = {
        "id": order_id,
        "created_at": created_at or "2024-10-01T10:00:00Z",
        "updated_at": updated_at,
        "currency": "USD",
        "subtotal_price": total,
        "total_price": total,
        "total_tax": "0.00",
        "total_discounts": "0.00",
        "financial_status": "paid",
        "fulfillment_status": None,
        "customer": {"id": 555},
        "email": "buyer@example.com",
        "line_items": [
            {
                "id": order_id * 10,
                "product_id": 7001,
                "variant_id": 8001,
                "title": "Widget",
                "sku": "W-1",
                "quantity": 2,
                "price": "50.00",
            }
        ],
    }
    order.update(extra)
    return order


@pytest.fixture
def post_webhook(client):
    """Post a signed webhook body; returns the response."""
    def _post(topic: str, payload, shop: str = SHOP, secret: str = API_SECRET):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        return client.post(
            "/integrations/shopify/webhooks",
            content=raw,
            headers=webhook_headers(raw, topic, shop=shop, secret=secret),
        )
    return _post


@pytest.fixture
def connected_shop(test_db_session):
    """Store an encrypted credential for SHOP."""
    from sierre.services.credential_service import save_shop_credential

    return save_shop_credential(test_db_session, SHOP, access_token="shpat_test_token", scope="read_orders")
