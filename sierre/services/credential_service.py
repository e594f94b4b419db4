"""Credential store for connected Shopify shops.

WHAT:
    Encrypts and persists the offline access token granted by OAuth, reads it
    back for Admin API calls, and removes it on disconnect.

WHY:
    Every Shopify call starts here. Keeping encryption in one place means no
    router or sync path ever handles ciphertext directly.

REFERENCES:
    - sierre/security.py (encrypt_secret / decrypt_secret)
    - sierre/routers/shopify_oauth.py (writes on callback, deletes on disconnect)
    - sierre/services/shopify_sync_service.py (reads before each sync)
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PersistenceError
from ..models import ShopCredential, SyncStatus
from ..security import decrypt_secret, encrypt_secret
from ..utils.dates import utc_now

logger = logging.getLogger(__name__)


def save_shop_credential(
    db: Session,
    shop: str,
    *,
    access_token: str,
    scope: Optional[str] = None,
    installed_by: Optional[str] = None,
) -> ShopCredential:
    """Encrypt and upsert the shop's token (reconnecting replaces the old one).

    Raises:
        PersistenceError: If the row cannot be written
    """
    encrypted = encrypt_secret(access_token, context=f"shopify:{shop}")

    try:
        credential = db.query(ShopCredential).filter(ShopCredential.shop == shop).first()
        if credential:
            credential.access_token = encrypted
            credential.scope = scope
            credential.updated_at = utc_now()
            if installed_by:
                credential.installed_by = installed_by
            logger.info("[CREDENTIALS] Updated token for %s", shop)
        else:
            credential = ShopCredential(
                shop=shop,
                access_token=encrypted,
                scope=scope,
                installed_by=installed_by,
            )
            db.add(credential)
            logger.info("[CREDENTIALS] Stored new token for %s", shop)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[CREDENTIALS] Failed to store token for %s: %s", shop, e)
        raise PersistenceError(f"Failed to store credentials for {shop}") from e

    return credential


def get_shop_credential(db: Session, shop: str) -> Optional[ShopCredential]:
    return db.query(ShopCredential).filter(ShopCredential.shop == shop).first()


def get_access_token(db: Session, shop: str) -> Optional[str]:
    """Return the plaintext token for `shop`, or None when it is not connected."""
    credential = get_shop_credential(db, shop)
    if not credential:
        return None
    return decrypt_secret(credential.access_token, context=f"shopify:{shop}")


def delete_shop_credential(db: Session, shop: str) -> bool:
    """Disconnect a shop: drop its token and sync checkpoints.

    Mirrored orders and products are kept (no erasure on disconnect).

    Returns:
        True if a credential existed
    """
    try:
        deleted = db.query(ShopCredential).filter(ShopCredential.shop == shop).delete()
        db.query(SyncStatus).filter(SyncStatus.shop == shop).delete()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to disconnect {shop}") from e

    logger.info("[CREDENTIALS] Disconnected %s (had credential: %s)", shop, bool(deleted))
    return bool(deleted)
