#!/usr/bin/env python3
"""
Scheduled jobs.

WHAT:
    Entry points for the scheduler (cron / platform jobs):
    - aggregate: recompute the `kpi_daily` row for every connected shop
    - sync: incremental order sync for every connected shop

USAGE:
    # Roll up today (UTC) for all shops
    python scripts/cron.py aggregate

    # Roll up a specific day for one shop
    python scripts/cron.py aggregate --date 2024-10-01 --shop mystore.myshopify.com

    # Pull orders updated since each shop's checkpoint
    python scripts/cron.py sync

One failing shop is logged and skipped; the exit code is 1 if any shop failed.

REFERENCES:
    - sierre/services/kpi_service.py:aggregate_daily
    - sierre/services/shopify_sync_service.py:sync_orders
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _shops(db, shop: Optional[str]) -> List[str]:
    from sierre.models import ShopCredential

    if shop:
        return [shop]
    return [row.shop for row in db.query(ShopCredential.shop).order_by(ShopCredential.shop).all()]


def run_aggregate(date_str: Optional[str], shop: Optional[str]) -> int:
    from sierre.database import get_sync_session
    from sierre.errors import SierreError
    from sierre.services.kpi_service import aggregate_daily

    failures = 0
    with get_sync_session() as db:
        for shop_domain in _shops(db, shop):
            try:
                result = aggregate_daily(db, shop_domain, date_str)
                logger.info(f"[CRON] {shop_domain} {result.date}: revenue={result.revenue} orders={result.orders}")
            except SierreError as e:
                failures += 1
                logger.error(f"[CRON] Aggregate failed for {shop_domain}: {e.message}")
            except Exception as e:
                failures += 1
                db.rollback()
                logger.exception(f"[CRON] Aggregate failed for {shop_domain}: {e}")
    return failures


async def run_sync(shop: Optional[str]) -> int:
    from sierre.database import get_sync_session
    from sierre.errors import SierreError
    from sierre.services.shopify_sync_service import sync_orders

    failures = 0
    with get_sync_session() as db:
        for shop_domain in _shops(db, shop):
            try:
                result = await sync_orders(db, shop_domain)
                logger.info(f"[CRON] {shop_domain}: synced {result.upserted} orders")
            except SierreError as e:
                failures += 1
                logger.error(f"[CRON] Sync failed for {shop_domain}: {e.message}")
            except Exception as e:
                failures += 1
                db.rollback()
                logger.exception(f"[CRON] Sync failed for {shop_domain}: {e}")
    return failures


def main():
    parser = argparse.ArgumentParser(description="Sierre scheduled jobs")
    subparsers = parser.add_subparsers(dest="command", help="Job to run")

    aggregate_parser = subparsers.add_parser("aggregate", help="Recompute kpi_daily rows")
    aggregate_parser.add_argument("--date", default=None, help="UTC day YYYY-MM-DD (default today)")
    aggregate_parser.add_argument("--shop", default=None, help="Single shop domain (default all connected)")

    sync_parser = subparsers.add_parser("sync", help="Incremental order sync")
    sync_parser.add_argument("--shop", default=None, help="Single shop domain (default all connected)")

    args = parser.parse_args()

    if args.command == "aggregate":
        failures = run_aggregate(args.date, args.shop)
    elif args.command == "sync":
        failures = asyncio.run(run_sync(args.shop))
    else:
        parser.print_help()
        return

    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
