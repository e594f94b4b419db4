"""Tests for the scheduled job runner (scripts/cron.py).

WHAT:
    Per-shop isolation of the `aggregate` and `sync` jobs: a shop that fails
    for any reason (including an undecryptable token) is counted and the
    loop moves on to the next shop.

REFERENCES:
    - scripts/cron.py
"""

import asyncio
import importlib.util
from contextlib import contextmanager
from pathlib import Path

import pytest

from sierre import database
from sierre.services import kpi_service, shopify_sync_service
from sierre.services.credential_service import save_shop_credential
from sierre.services.shopify_sync_service import ShopifySyncResult

BROKEN_SHOP = "a-broken.myshopify.com"
HEALTHY_SHOP = "b-healthy.myshopify.com"


def load_cron_module():
    path = Path(__file__).resolve().parents[2] / "scripts" / "cron.py"
    module_spec = importlib.util.spec_from_file_location("sierre_cron_jobs", path)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


@pytest.fixture
def cron(test_db_session, monkeypatch):
    """cron module bound to the test session, with two connected shops."""
    save_shop_credential(test_db_session, BROKEN_SHOP, access_token="shpat_broken")
    save_shop_credential(test_db_session, HEALTHY_SHOP, access_token="shpat_healthy")

    @contextmanager
    def session():
        yield test_db_session

    monkeypatch.setattr(database, "get_sync_session", session)
    return load_cron_module()


class TestSyncJob:
    def test_unexpected_error_skips_only_that_shop(self, cron, monkeypatch):
        """WHAT: ValueError (e.g. a rotated encryption key) for the first shop.
        WHY: The remaining shops must still be synced.
        """
        synced = []

        async def fake_sync(db, shop):
            if shop == BROKEN_SHOP:
                raise ValueError("Invalid token ciphertext")
            synced.append(shop)
            return ShopifySyncResult(fetched_count=1, upserted=1)

        monkeypatch.setattr(shopify_sync_service, "sync_orders", fake_sync)

        failures = asyncio.run(cron.run_sync(None))

        assert failures == 1
        assert synced == [HEALTHY_SHOP]


class TestAggregateJob:
    def test_unexpected_error_skips_only_that_shop(self, cron, monkeypatch):
        aggregated = []
        real_aggregate = kpi_service.aggregate_daily

        def fake_aggregate(db, shop, date_str=None):
            if shop == BROKEN_SHOP:
                raise RuntimeError("connection reset")
            aggregated.append(shop)
            return real_aggregate(db, shop, date_str)

        monkeypatch.setattr(kpi_service, "aggregate_daily", fake_aggregate)

        failures = cron.run_aggregate("2024-10-01", None)

        assert failures == 1
        assert aggregated == [HEALTHY_SHOP]
