#!/usr/bin/env python3
"""
Force a full resync of one company from the Whop API into DuckDB.

Run this when the dashboard looks out of date and the hourly freshness
window is in the way.

Usage:
    python scripts/force_resync.py
    python scripts/force_resync.py --company biz_XXXXXXXX
    python scripts/force_resync.py --snapshot   # also record today's metric snapshot
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from whop_analytics.config import config, validate_config, ConfigurationError
from whop_analytics.metrics import MetricsEngine
from whop_analytics.observability import configure_logging, get_logger
from whop_analytics.store import DuckDBStore
from whop_analytics.sync_service import SyncService
from whop_analytics.whop_client import WhopClient

logger = get_logger("force_resync")


async def main(company_id: str, snapshot: bool = False) -> int:
    """Run a forced sync. Returns a process exit code."""
    async with DuckDBStore() as store, WhopClient() as client:
        stats_before = await store.get_stats()
        logger.info(
            f"Before resync: {stats_before['payments']} payments, "
            f"{stats_before['memberships']} memberships"
        )

        result = await SyncService(store, client).sync(company_id, force=True)
        if not result.success:
            logger.error(f"Resync failed: {result.error}")
            return 1

        logger.info(f"Resync complete: {result.to_dict()}")

        stats_after = await store.get_stats()
        logger.info(
            f"After resync: {stats_after['payments']} payments, "
            f"{stats_after['memberships']} memberships, {stats_after['products']} products"
        )

        if snapshot:
            written = await MetricsEngine(store).record_snapshot(company_id)
            logger.info(f"Recorded {written} metric snapshots")

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Force resync Whop data into DuckDB")
    parser.add_argument("--company", default=config.api.company_id, help="Whop company ID (biz_...)")
    parser.add_argument("--snapshot", action="store_true", help="Record today's metric snapshot after syncing")
    args = parser.parse_args()

    configure_logging()
    try:
        validate_config(require_api=True)
    except ConfigurationError as e:
        logger.critical(str(e))
        sys.exit(1)

    sys.exit(asyncio.run(main(args.company, args.snapshot)))
