"""FastAPI application entrypoint.

Configures CORS and error rendering, includes routers, and exposes a
healthcheck endpoint.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .errors import SierreError
from .routers import insights as insights_router
from .routers import kpis as kpis_router
from .routers import shopify_oauth as shopify_oauth_router  # Shopify OAuth flow
from .routers import shopify_sync as shopify_sync_router  # Shopify sync endpoints
from .routers import shopify_webhooks as shopify_webhooks_router  # Shopify topic webhooks
from .telemetry import capture_exception, init_sentry
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401

# Endpoints that require the access_token cookie
PROTECTED_ENDPOINTS = ["/integrations/shopify/connect", "/integrations/shopify/disconnect"]


def register_error_handlers(app: FastAPI) -> None:
    """Render every SierreError as `{"error": message}` with its status code."""

    @app.exception_handler(SierreError)
    async def sierre_error_handler(request: Request, exc: SierreError):
        if exc.status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
            capture_exception(exc, extra={"path": request.url.path})
        else:
            logger.info(f"[API] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def create_app() -> FastAPI:
    init_sentry()

    app = FastAPI(
        title="Sierre API",
        description="""
        Sierre mirrors Shopify store data and turns it into dashboard KPIs and insights.

        This API provides endpoints for:
        - Connecting Shopify stores (OAuth) and managing the connection
        - Order and product sync / backfill from the Admin API
        - Shopify webhook ingestion
        - KPI summaries, daily sales series and top products
        - Rule-based store insights

        ## Authentication

        Connect and disconnect require a JWT in the `access_token` HTTP-only cookie
        (or an `Authorization: Bearer` header). Webhooks are authenticated by HMAC.
        """,
        version="1.0.0",
    )

    # Trust X-Forwarded-Proto from the load balancer so request.url.scheme is "https"
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    settings = get_settings()
    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Include all API routers
    app.include_router(shopify_oauth_router.router)
    app.include_router(shopify_sync_router.router)
    app.include_router(shopify_webhooks_router.router)
    app.include_router(kpis_router.router)
    app.include_router(insights_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        This endpoint:
        - Does not require authentication
        - Does not touch the database
        - Can be used for load balancer health checks
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    # Custom OpenAPI schema with security definitions
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "cookieAuth": {
                "type": "apiKey",
                "in": "cookie",
                "name": "access_token",
                "description": "JWT token stored in HTTP-only cookie. Format: 'Bearer <token>'"
            }
        }

        for path in PROTECTED_ENDPOINTS:
            for operation in openapi_schema["paths"].get(path, {}).values():
                operation.setdefault("security", [{"cookieAuth": []}])

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app


app = create_app()
