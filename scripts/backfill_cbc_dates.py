#!/usr/bin/env python3
"""
Backfill last call, next call and CBC dates for open opportunities.

Recalculates every opportunity that is not closed, one at a time, and syncs
its CBC reminder task inline.

Usage:
    python scripts/backfill_cbc_dates.py [--opportunity-id ID ...] [--limit N] [--skip-tasks]

Options:
    --opportunity-id: Only recalculate these opportunities (repeatable)
    --limit: Process at most N open opportunities
    --skip-tasks: Recalculate dates only; CBC reminder tasks are left untouched
"""

import argparse
import asyncio
import sys
from pathlib import Path
from uuid import UUID

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracker.core.logging import get_logger
from tracker.core.opportunity_dates import recalculate_opportunity_dates_batch
from tracker.core.schemas_schedule import BatchRecalculationItem
from tracker.db.opportunities import list_active_opportunities

logger = get_logger(__name__)


def summarize(results: list[BatchRecalculationItem]) -> dict[str, int]:
    """Count outcomes of a batch recalculation."""
    summary = {
        "processed": 0,
        "with_next_call": 0,
        "needs_next_call": 0,
        "with_cbc": 0,
        "errors": 0,
    }
    for item in results:
        if item.error or item.result is None:
            summary["errors"] += 1
            continue
        summary["processed"] += 1
        if item.result.next_call_date:
            summary["with_next_call"] += 1
        if item.result.needs_next_call_scheduled:
            summary["needs_next_call"] += 1
        if item.result.cbc_date:
            summary["with_cbc"] += 1
    return summary


def _day(value) -> str:
    return value.date().isoformat() if value else "none"


async def backfill_cbc_dates(
    opportunity_ids: list[UUID] | None = None,
    limit: int | None = None,
    sync_tasks: bool = True,
) -> dict[str, int]:
    """Recalculate dates for the given (or all open) opportunities."""
    if opportunity_ids is None:
        opportunities = list_active_opportunities(limit=limit)
        logger.info(f"Found {len(opportunities)} active opportunities")
        opportunity_ids = [UUID(str(opp["id"])) for opp in opportunities]

    results = await recalculate_opportunity_dates_batch(opportunity_ids, sync_tasks=sync_tasks)

    for item in results:
        if item.error:
            logger.error(f"✗ {item.opportunity_id}: {item.error}")
            continue
        result = item.result
        logger.info(
            f"✓ {item.opportunity_id}: "
            f"last={_day(result.last_call_date)}, "
            f"next={_day(result.next_call_date)}, "
            f"cbc={_day(result.cbc_date)}, "
            f"needs_next={result.needs_next_call_scheduled}"
        )

    return summarize(results)


def main():
    """Main backfill function."""
    parser = argparse.ArgumentParser(description="Recalculate CBC dates for open opportunities")
    parser.add_argument(
        "--opportunity-id",
        action="append",
        type=UUID,
        help="Only recalculate this opportunity (repeatable)",
    )
    parser.add_argument("--limit", type=int, help="Process at most N open opportunities")
    parser.add_argument(
        "--skip-tasks",
        action="store_true",
        help="Recalculate dates without syncing CBC tasks",
    )

    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("CBC DATE BACKFILL")
    logger.info("=" * 60)

    try:
        summary = asyncio.run(
            backfill_cbc_dates(
                opportunity_ids=args.opportunity_id,
                limit=args.limit,
                sync_tasks=not args.skip_tasks,
            )
        )
    except Exception as e:
        logger.error(f"Backfill failed: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info(
        f"BACKFILL COMPLETE - processed={summary['processed']}, "
        f"with_next_call={summary['with_next_call']}, "
        f"needs_next_call={summary['needs_next_call']}, "
        f"with_cbc={summary['with_cbc']}, errors={summary['errors']}"
    )
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
