"""
Sentry Error Tracking
=====================

Related files:
- sierre/main.py: Initializes Sentry in create_app()
- sierre/services/shopify_webhook_service.py: reports swallowed handler failures
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.utils import BadDsn

logger = logging.getLogger(__name__)


def init_sentry() -> bool:
    """
    Initialize Sentry SDK for FastAPI when SENTRY_DSN is configured.

    Returns:
        True if Sentry was initialized, False when disabled or misconfigured.
    """
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,         # INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            # Webhook payloads carry customer emails
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )
    except BadDsn as e:
        logger.error(f"[SENTRY] Failed to initialize: {e}")
        return False

    logger.info(f"[SENTRY] Initialized for {environment} environment")
    return True


def capture_exception(exception: BaseException, extra: Optional[dict] = None) -> None:
    """
    Report an exception that was caught and handled.

    No-op when Sentry is not initialized.

    Example:
        try:
            handler(payload)
        except Exception as e:
            capture_exception(e, extra={"topic": topic, "shop": shop})
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
