"""Environment helpers shared by import-time configuration (database, security)."""

import logging
import os

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env_file() -> None:
    """Load a local .env into os.environ without overriding exported variables.

    WHAT:
        Thin wrapper around python-dotenv used before reading DATABASE_URL,
        JWT_SECRET and TOKEN_ENCRYPTION_KEY.
    WHY:
        Developers keep secrets in .env; production exports them directly and
        must win.
    """
    if load_dotenv(override=False):
        logger.info("[ENV] Loaded local .env file (existing variables were NOT overwritten)")
    else:
        logger.debug("[ENV] No local .env file found")
