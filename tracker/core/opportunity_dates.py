"""Recalculate and persist an opportunity's call dates and CBC date.

One recalculation: collect meetings, calculate dates, write every schedule
field in a single update, then hand the CBC task sync off to the background.
Date persistence never depends on the task sync succeeding.

Manual next-call dates are not preserved here: an automatic recalculation
always overwrites ``next_call_date`` with the calculated value, even when
``next_call_date_manually_set`` is true.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Optional, Sequence
from uuid import UUID

from tracker.core.cbc_calculator import (
    calculate_cbc_dates,
    days_until_cbc,
    is_cbc_due,
    is_cbc_overdue,
)
from tracker.core.cbc_tasks import process_cbc_task_for_opportunity
from tracker.core.google_tasks_service import GoogleTasksClient
from tracker.core.logging import get_logger, log_with_context
from tracker.core.meeting_collector import collect_meetings
from tracker.core.schemas_schedule import (
    BatchRecalculationItem,
    MeetingSource,
    OpportunityDatesCalculation,
    ScheduleStateResponse,
)
from tracker.db import opportunities as opportunities_db

logger = get_logger(__name__)

# Strong references to in-flight background syncs (asyncio only keeps weak ones)
_pending_syncs: set[asyncio.Task] = set()


class OpportunityNotFoundError(Exception):
    """Raised when an opportunity does not exist."""

    def __init__(self, opportunity_id: UUID):
        self.opportunity_id = opportunity_id
        super().__init__(f"Opportunity {opportunity_id} not found")


# ============================================================================
# CBC task hand-off
# ============================================================================


async def run_cbc_task_sync(
    opportunity_id: UUID,
    tasks_client: Optional[GoogleTasksClient] = None,
) -> None:
    """Run one CBC task sync attempt. Never raises; failures are logged."""
    try:
        result = await process_cbc_task_for_opportunity(opportunity_id, tasks_client=tasks_client)
    except Exception:
        logger.exception(f"Failed to process CBC task for {opportunity_id}")
        return

    if result.error:
        log_with_context(
            logger,
            logging.ERROR,
            "CBC task sync reported an error",
            opportunity_id=str(opportunity_id),
            error=result.error,
        )
    else:
        log_with_context(
            logger,
            logging.DEBUG,
            "CBC task sync finished",
            opportunity_id=str(opportunity_id),
            created=result.created,
            updated=result.updated,
            deleted=result.deleted,
            skipped=result.skipped,
        )


def dispatch_cbc_task_sync(
    opportunity_id: UUID,
    tasks_client: Optional[GoogleTasksClient] = None,
) -> asyncio.Task:
    """
    Submit a CBC task sync to the running event loop without awaiting it.

    At most one attempt is made and nothing retries it; the returned task
    is only useful to callers that want to wait for it (tests, shutdown).
    """
    task = asyncio.create_task(run_cbc_task_sync(opportunity_id, tasks_client))
    _pending_syncs.add(task)
    task.add_done_callback(_pending_syncs.discard)
    return task


async def wait_for_pending_syncs(timeout: Optional[float] = None) -> int:
    """
    Wait for in-flight CBC task syncs, cancelling any still running after ``timeout``.

    Returns:
        Number of syncs that were cancelled
    """
    if not _pending_syncs:
        return 0

    _, still_running = await asyncio.wait(set(_pending_syncs), timeout=timeout)
    for task in still_running:
        task.cancel()

    if still_running:
        logger.warning(f"Cancelled {len(still_running)} unfinished CBC task syncs")
    return len(still_running)


# ============================================================================
# Recalculation
# ============================================================================


async def recalculate_opportunity_dates(
    opportunity_id: UUID,
    await_task_sync: bool = False,
    tasks_client: Optional[GoogleTasksClient] = None,
    sync_tasks: bool = True,
) -> OpportunityDatesCalculation:
    """
    Recalculate all dates for an opportunity including CBC.

    1. Collects meetings from calendar (external only), call recordings and notes
    2. Calculates last call, next call, CBC midpoint and the needs-next-call flag
    3. Writes every schedule field in one update, stamped with ``calculated_at``
    4. Syncs the CBC task, in the background unless ``await_task_sync``;
       skipped entirely when ``sync_tasks`` is false

    Args:
        opportunity_id: Opportunity to recalculate
        await_task_sync: Wait for the CBC task sync instead of dispatching it
        tasks_client: Google Tasks client for the sync
        sync_tasks: Leave the CBC task alone (dates only)

    Returns:
        Calculation result with ``calculated_at``

    Raises:
        OpportunityNotFoundError: Opportunity does not exist (nothing written)
        MeetingSourceUnavailableError: A meeting source failed (nothing written)
    """
    opportunity = opportunities_db.get_opportunity(opportunity_id)
    if not opportunity:
        raise OpportunityNotFoundError(opportunity_id)

    meetings = collect_meetings(opportunity_id)
    calculated = calculate_cbc_dates(meetings)
    calculated_at = datetime.now(UTC)

    opportunities_db.update_schedule_state(
        opportunity_id,
        {
            "last_call_date": calculated.last_call_date,
            "last_call_date_source": calculated.last_call_date_source,
            "last_call_date_event_id": calculated.last_call_date_event_id,
            "next_call_date": calculated.next_call_date,
            "next_call_date_source": calculated.next_call_date_source,
            "next_call_date_event_id": calculated.next_call_date_event_id,
            "next_call_date_last_calculated": calculated_at,
            "cbc": calculated.cbc_date,
            "cbc_last_calculated": calculated_at,
            "needs_next_call_scheduled": calculated.needs_next_call_scheduled,
        },
    )

    log_with_context(
        logger,
        logging.INFO,
        "Recalculated opportunity dates",
        opportunity_id=str(opportunity_id),
        meetings=len(meetings),
        last_call=calculated.last_call_date.isoformat() if calculated.last_call_date else None,
        next_call=calculated.next_call_date.isoformat() if calculated.next_call_date else None,
        cbc=calculated.cbc_date.isoformat() if calculated.cbc_date else None,
    )

    if sync_tasks and await_task_sync:
        await run_cbc_task_sync(opportunity_id, tasks_client)
    elif sync_tasks:
        dispatch_cbc_task_sync(opportunity_id, tasks_client)

    return OpportunityDatesCalculation(**calculated.model_dump(), calculated_at=calculated_at)


async def recalculate_opportunity_dates_batch(
    opportunity_ids: Sequence[UUID],
    await_task_sync: bool = True,
    tasks_client: Optional[GoogleTasksClient] = None,
    sync_tasks: bool = True,
) -> list[BatchRecalculationItem]:
    """
    Recalculate dates for several opportunities, one at a time.

    A failure is recorded on its item and the batch moves on. Task syncs are
    awaited inline by default so external API calls never run in parallel.
    Every sync in the batch goes through one Google Tasks client, so they all
    draw from the same rate limiter.
    """
    results: list[BatchRecalculationItem] = []

    if sync_tasks and tasks_client is None:
        tasks_client = GoogleTasksClient()

    for opportunity_id in opportunity_ids:
        try:
            result = await recalculate_opportunity_dates(
                opportunity_id,
                await_task_sync=await_task_sync,
                tasks_client=tasks_client,
                sync_tasks=sync_tasks,
            )
            results.append(BatchRecalculationItem(opportunity_id=opportunity_id, result=result))
        except Exception as e:
            logger.warning(f"Batch recalculation failed for {opportunity_id}: {e}")
            results.append(BatchRecalculationItem(opportunity_id=opportunity_id, error=str(e) or "Unknown error"))

    return results


# ============================================================================
# Manual edits and reads
# ============================================================================


def set_manual_next_call_date(
    opportunity_id: UUID,
    next_call_date: Optional[datetime],
) -> dict:
    """
    Set (or clear) an opportunity's next call date by hand.

    Raises:
        OpportunityNotFoundError: Opportunity does not exist
    """
    if not opportunities_db.get_opportunity(opportunity_id):
        raise OpportunityNotFoundError(opportunity_id)

    updated = opportunities_db.update_schedule_state(
        opportunity_id,
        {
            "next_call_date": next_call_date,
            "next_call_date_source": MeetingSource.MANUAL,
            "next_call_date_manually_set": True,
            "next_call_date_last_calculated": datetime.now(UTC),
            "next_call_date_event_id": None,
        },
    )
    logger.info(f"Next call date manually set for opportunity {opportunity_id}")
    return updated or {}


def get_schedule_state(opportunity_id: UUID) -> ScheduleStateResponse:
    """
    Read an opportunity's schedule fields with the CBC due status.

    Raises:
        OpportunityNotFoundError: Opportunity does not exist
    """
    opportunity = opportunities_db.get_opportunity(opportunity_id)
    if not opportunity:
        raise OpportunityNotFoundError(opportunity_id)

    fields = {key: opportunity.get(key) for key in opportunities_db.SCHEDULE_FIELDS}
    fields["next_call_date_manually_set"] = bool(fields["next_call_date_manually_set"])
    fields["needs_next_call_scheduled"] = bool(fields["needs_next_call_scheduled"])
    state = ScheduleStateResponse(opportunity_id=opportunity_id, **fields)

    state.cbc_due = is_cbc_due(state.cbc)
    state.cbc_overdue = is_cbc_overdue(state.cbc)
    state.days_until_cbc = days_until_cbc(state.cbc)
    return state
