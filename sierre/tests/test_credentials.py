"""Tests for the encrypted Shopify credential store.

REFERENCES:
    - sierre/services/credential_service.py
    - sierre/security.py
"""

from datetime import datetime

import pytest

from sierre.models import ShopCredential, SyncStatus
from sierre.security import decrypt_secret, encrypt_secret
from sierre.services.credential_service import (
    delete_shop_credential,
    get_access_token,
    get_shop_credential,
    save_shop_credential,
)
from sierre.services.shopify_persistence import record_sync_checkpoint

from conftest import SHOP


class TestEncryption:
    def test_ciphertext_differs_from_plaintext(self):
        ciphertext = encrypt_secret("shpat_secret", context=SHOP)
        assert "shpat_secret" not in ciphertext
        assert decrypt_secret(ciphertext, context=SHOP) == "shpat_secret"

    def test_empty_secret_is_rejected(self):
        with pytest.raises(ValueError):
            encrypt_secret("", context=SHOP)

    def test_garbage_ciphertext_is_rejected(self):
        with pytest.raises(ValueError):
            decrypt_secret("not-a-fernet-token", context=SHOP)


class TestCredentialStore:
    def test_token_is_stored_encrypted(self, test_db_session):
        save_shop_credential(test_db_session, SHOP, access_token="shpat_plain", scope="read_orders")

        row = test_db_session.query(ShopCredential).one()
        assert row.access_token != "shpat_plain"
        assert get_access_token(test_db_session, SHOP) == "shpat_plain"

    def test_reconnect_replaces_token(self, test_db_session):
        save_shop_credential(test_db_session, SHOP, access_token="shpat_old", scope="read_orders", installed_by="u1")
        save_shop_credential(test_db_session, SHOP, access_token="shpat_new", scope="read_orders,read_products")

        assert test_db_session.query(ShopCredential).count() == 1
        assert get_access_token(test_db_session, SHOP) == "shpat_new"
        credential = get_shop_credential(test_db_session, SHOP)
        assert credential.scope == "read_orders,read_products"
        assert credential.installed_by == "u1"

    def test_unknown_shop_has_no_token(self, test_db_session):
        assert get_access_token(test_db_session, "nobody.myshopify.com") is None

    def test_delete_removes_credential_and_checkpoints(self, test_db_session):
        save_shop_credential(test_db_session, SHOP, access_token="shpat_x")
        record_sync_checkpoint(test_db_session, SHOP, "orders_last_sync_at", datetime(2024, 10, 1))

        assert delete_shop_credential(test_db_session, SHOP) is True
        assert get_access_token(test_db_session, SHOP) is None
        assert test_db_session.query(SyncStatus).count() == 0

    def test_delete_unknown_shop_returns_false(self, test_db_session):
        assert delete_shop_credential(test_db_session, "nobody.myshopify.com") is False
