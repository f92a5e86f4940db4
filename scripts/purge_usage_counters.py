#!/usr/bin/env python3
"""
Purge stale usage counter buckets.

Request paths only ever touch the current hour/day bucket, so older rows are
dead weight. Run from cron.

Usage:
    # Delete buckets that started more than 7 days ago (default)
    python3 scripts/purge_usage_counters.py

    # Keep 30 days
    python3 scripts/purge_usage_counters.py --days 30

    # Report the cutoff without deleting
    python3 scripts/purge_usage_counters.py --dry-run
"""

import argparse
import asyncio
import sys
from datetime import datetime, timedelta

from entitlement_service.db.session import close_engines, get_write_session
from entitlement_service.exceptions import UsageStoreError
from entitlement_service.observability import get_logger, setup_logging
from entitlement_service.services.usage_store import UsageCounterStore, local_now

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 7


def compute_cutoff(days: int, now: datetime | None = None) -> datetime:
    """Oldest bucket start to keep."""
    if days < 1:
        raise ValueError("Retention must be at least one day")
    return (now or local_now()) - timedelta(days=days)


async def purge(days: int, dry_run: bool) -> int:
    cutoff = compute_cutoff(days)
    if dry_run:
        logger.info("usage_purge_dry_run", cutoff=cutoff.isoformat())
        return 0

    try:
        async with get_write_session() as session:
            return await UsageCounterStore(session).purge_before(cutoff)
    finally:
        await close_engines()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Delete usage counter buckets older than the retention window",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_RETENTION_DAYS,
        help=f"Retention window in days (default: {DEFAULT_RETENTION_DAYS})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Compute cutoff only")
    args = parser.parse_args()

    setup_logging()
    try:
        deleted = asyncio.run(purge(args.days, args.dry_run))
    except (ValueError, UsageStoreError) as e:
        logger.error("usage_purge_failed", error=str(e))
        return 1

    logger.info("usage_purge_complete", deleted=deleted)
    return 0


if __name__ == "__main__":
    sys.exit(main())
