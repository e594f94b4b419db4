"""Application error taxonomy.

WHAT:
    Exception classes shared by services and routers. Each carries the HTTP
    status it maps to, so route handlers can raise domain errors and let the
    single handler registered in `main.create_app()` render `{"error": message}`.

WHY:
    Clients only ever see an HTTP status plus a message. Keeping the mapping
    on the exception avoids repeating try/except → HTTPException blocks in
    every router.

REFERENCES:
    - sierre/main.py: register_error_handlers
    - sierre/services/shopify_client.py: ShopifyAPIError and subclasses
"""

from typing import Any, List, Optional


class SierreError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthError(SierreError):
    """Missing or invalid session."""

    status_code = 401


class ValidationError(SierreError):
    """Missing or malformed request field (e.g. absent `shop`)."""

    status_code = 400


class ConfigurationError(SierreError):
    """Server-side configuration (Shopify app credentials) is missing."""

    status_code = 503


class UpstreamError(SierreError):
    """Shopify returned a non-2xx or malformed response."""

    status_code = 500


class ShopifyAPIError(UpstreamError):
    """Shopify Admin API call failed.

    Attributes:
        upstream_status: HTTP status returned by Shopify (None for network errors)
        errors: Error payload reported by Shopify, if any
    """

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        errors: Optional[List[Any]] = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.errors = errors or []


class RateLimited(ShopifyAPIError):
    """Shopify kept answering 429 after every retry."""


class ShopifyNetworkError(ShopifyAPIError):
    """Transport-level failure talking to Shopify (DNS, timeout, reset)."""


class SignatureError(SierreError):
    """Webhook HMAC did not match the raw body."""

    status_code = 401


class PersistenceError(SierreError):
    """Database upsert failed."""

    status_code = 500


class WebhookPayloadError(ValidationError):
    """Verified webhook body does not match the expected shape for its topic."""
