"""Tests for webhook and OAuth HMAC verification.

WHAT:
    Soundness of `verify_webhook_signature` (base64 HMAC over the raw body)
    and `verify_oauth_hmac` (hex HMAC over sorted query params).

WHY:
    These two checks are the only thing standing between the public
    endpoints and the database.

REFERENCES:
    - sierre/services/shopify_webhook_service.py
    - sierre/services/shopify_oauth.py
"""

import hashlib
import hmac

import pytest

from sierre.services.shopify_oauth import verify_oauth_hmac
from sierre.services.shopify_webhook_service import verify_webhook_signature

from conftest import sign_webhook

SECRET = "hush"
BODY = b'{"id":1001,"total_price":"100.00"}'


class TestWebhookSignature:
    def test_valid_signature_verifies(self):
        assert verify_webhook_signature(sign_webhook(BODY, SECRET), BODY, SECRET) is True

    def test_missing_header_fails(self):
        assert verify_webhook_signature(None, BODY, SECRET) is False
        assert verify_webhook_signature("", BODY, SECRET) is False

    def test_missing_secret_fails(self):
        assert verify_webhook_signature(sign_webhook(BODY, SECRET), BODY, None) is False

    def test_wrong_secret_fails(self):
        assert verify_webhook_signature(sign_webhook(BODY, "other"), BODY, SECRET) is False

    @pytest.mark.parametrize("index", [0, 5, len(BODY) - 1])
    def test_single_bit_flip_in_body_fails(self, index):
        """WHAT: Any byte change after signing invalidates the signature.
        WHY: Re-serialized or tampered bodies must never verify.
        """
        signature = sign_webhook(BODY, SECRET)
        tampered = bytearray(BODY)
        tampered[index] ^= 0x01
        assert verify_webhook_signature(signature, bytes(tampered), SECRET) is False

    @pytest.mark.parametrize("index", [0, 10, 42])
    def test_single_character_change_in_header_fails(self, index):
        """WHAT: One altered base64 character in X-Shopify-Hmac-Sha256 is rejected."""
        signature = sign_webhook(BODY, SECRET)
        replacement = "B" if signature[index] == "A" else "A"
        tampered = signature[:index] + replacement + signature[index + 1:]
        assert verify_webhook_signature(tampered, BODY, SECRET) is False

    def test_reserialized_json_fails(self):
        signature = sign_webhook(BODY, SECRET)
        reserialized = b'{"id": 1001, "total_price": "100.00"}'
        assert verify_webhook_signature(signature, reserialized, SECRET) is False


def _oauth_hmac(params, secret):
    message = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


class TestOAuthHmac:
    PARAMS = {
        "code": "0907a61c0c8d55e99db179b68161bc00",
        "shop": "teststore.myshopify.com",
        "state": "nonce-123",
        "timestamp": "1337178173",
    }

    def test_valid_hmac_verifies(self):
        params = dict(self.PARAMS, hmac=_oauth_hmac(self.PARAMS, SECRET))
        assert verify_oauth_hmac(params, SECRET) is True

    def test_signature_param_is_excluded(self):
        params = dict(self.PARAMS, hmac=_oauth_hmac(self.PARAMS, SECRET), signature="legacy")
        assert verify_oauth_hmac(params, SECRET) is True

    def test_tampered_param_fails(self):
        params = dict(self.PARAMS, hmac=_oauth_hmac(self.PARAMS, SECRET))
        params["shop"] = "evil.myshopify.com"
        assert verify_oauth_hmac(params, SECRET) is False

    def test_missing_hmac_or_secret_fails(self):
        assert verify_oauth_hmac(dict(self.PARAMS), SECRET) is False
        params = dict(self.PARAMS, hmac=_oauth_hmac(self.PARAMS, SECRET))
        assert verify_oauth_hmac(params, None) is False
