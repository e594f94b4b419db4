"""
Telemetry Module
================

Error reporting for Sierre. Log lines stay the primary signal; Sentry adds
alerting for failures that are deliberately swallowed (webhook topic handlers).

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from .sentry import capture_exception, init_sentry

__all__ = ["init_sentry", "capture_exception"]
