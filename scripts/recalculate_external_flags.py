#!/usr/bin/env python3
"""
Recompute the is_external flag of every calendar event.

Walks each organization that has an email domain, re-classifies its users'
calendar events, and (optionally) recalculates dates for the opportunities
whose events changed.

Usage:
    python scripts/recalculate_external_flags.py [--recalculate]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracker.core.external_events import recalculate_external_flags
from tracker.core.logging import get_logger
from tracker.core.opportunity_dates import recalculate_opportunity_dates_batch
from tracker.db.users import list_organizations_with_domain

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Recalculate calendar event external flags")
    parser.add_argument(
        "--recalculate",
        action="store_true",
        help="Recalculate dates for opportunities whose events changed",
    )
    args = parser.parse_args()

    organizations = list_organizations_with_domain()
    logger.info(f"Found {len(organizations)} organizations with domains configured")

    checked = 0
    updated = 0
    touched = []

    for org in organizations:
        logger.info(f"Processing: {org['name']} (domain: {org['domain']})")
        summary = recalculate_external_flags(org)
        checked += summary.events_checked
        updated += summary.events_updated
        touched.extend(summary.opportunity_ids)

    logger.info(f"Checked {checked} events, updated {updated}")

    if args.recalculate and touched:
        logger.info(f"Recalculating dates for {len(touched)} opportunities")
        results = asyncio.run(recalculate_opportunity_dates_batch(touched))
        failed = [item for item in results if item.error]
        for item in failed:
            logger.error(f"✗ {item.opportunity_id}: {item.error}")
        if failed:
            sys.exit(1)


if __name__ == "__main__":
    main()
