"""Dependency providers and settings management."""

from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from fastapi import Cookie, Header
from jose import JWTError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import AuthError, ConfigurationError
from .security import decode_token


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # Shopify app credentials (Partner dashboard → App → Client credentials)
    SHOPIFY_API_KEY: Optional[str] = None
    SHOPIFY_API_SECRET: Optional[str] = None
    SHOPIFY_SCOPES: str = "read_orders,read_products,read_inventory,read_customers"
    SHOPIFY_REDIRECT_URL: Optional[str] = None
    # Pinned Admin API version for every REST call
    SHOPIFY_API_VERSION: str = "2024-10"
    # Public base URL Shopify posts webhooks to (ngrok in development)
    SHOPIFY_WEBHOOK_BASE_URL: Optional[str] = None

    # Dashboard base URL for post-OAuth redirects
    APP_URL: str = "http://localhost:3000"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    def require_shopify_app(self) -> None:
        """Raise ConfigurationError listing missing Shopify app credentials."""
        missing = [
            name
            for name in ("SHOPIFY_API_KEY", "SHOPIFY_API_SECRET", "SHOPIFY_REDIRECT_URL")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Shopify integration not configured. Missing: {', '.join(missing)}"
            )


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


@dataclass
class CurrentUser:
    """Authenticated dashboard user (identity provider is external)."""

    id: str


def get_current_user(
    access_token: Optional[str] = Cookie(default=None, alias="access_token"),
    authorization: Optional[str] = Header(default=None),
) -> CurrentUser:
    """Resolve the current user from the `access_token` cookie or bearer header.

    Both values are expected in the form "Bearer <jwt>" (prefix optional).
    """
    raw = access_token or authorization
    if not raw:
        raise AuthError("Not authenticated")

    token = raw[len("Bearer "):] if raw.startswith("Bearer ") else raw

    try:
        payload = decode_token(token)
    except JWTError:
        raise AuthError("Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise AuthError("Invalid token payload")
    return CurrentUser(id=str(subject))
