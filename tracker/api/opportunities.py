"""Opportunity schedule API - call dates, CBC dates and CBC reminder tasks."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from tracker.core.cbc_tasks import process_cbc_task_for_opportunity
from tracker.core.config import get_settings
from tracker.core.google_tasks_service import GoogleTasksClient
from tracker.core.logging import get_logger
from tracker.core.meeting_collector import MeetingSourceUnavailableError
from tracker.core.opportunity_dates import (
    OpportunityNotFoundError,
    get_schedule_state,
    recalculate_opportunity_dates,
    recalculate_opportunity_dates_batch,
    set_manual_next_call_date,
)
from tracker.core.rate_limiter import RateLimiter
from tracker.core.schemas_schedule import (
    BatchRecalculationRequest,
    BatchRecalculationResponse,
    CbcTaskResult,
    ManualNextCallDateRequest,
    MeetingSyncedRequest,
    OpportunityDatesCalculation,
    ScheduleStateResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/opportunities", tags=["schedule"])


# ============================================================================
# Dependencies
# ============================================================================


def get_tasks_client(request: Request) -> GoogleTasksClient:
    """Google Tasks client owned by the application (one rate limiter per process)."""
    client = getattr(request.app.state, "google_tasks_client", None)
    if client is None:
        client = GoogleTasksClient()
        request.app.state.google_tasks_client = client
    return client


def get_recalculate_limiter(request: Request) -> RateLimiter:
    """Rate limiter for manual recalculations, owned by the application."""
    limiter = getattr(request.app.state, "recalculate_rate_limiter", None)
    if limiter is None:
        settings = get_settings()
        limiter = RateLimiter(
            requests_per_minute=settings.RECALCULATE_REQUESTS_PER_MINUTE,
            burst_size=settings.RECALCULATE_BURST_SIZE,
        )
        request.app.state.recalculate_rate_limiter = limiter
    return limiter


async def _recalculate_in_background(opportunity_id: UUID, tasks_client: GoogleTasksClient) -> None:
    """Recalculation queued from a sync hook; failures are only logged."""
    try:
        await recalculate_opportunity_dates(opportunity_id, await_task_sync=True, tasks_client=tasks_client)
    except Exception:
        logger.exception(f"Queued recalculation failed for opportunity {opportunity_id}")


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/{opportunity_id}/dates/recalculate", response_model=OpportunityDatesCalculation)
async def recalculate_dates(
    opportunity_id: UUID,
    tasks_client: GoogleTasksClient = Depends(get_tasks_client),
    limiter: RateLimiter = Depends(get_recalculate_limiter),
):
    """Recalculate last call, next call and CBC dates for one opportunity."""
    limiter.check_limit(f"recalculate:{opportunity_id}")

    try:
        return await recalculate_opportunity_dates(opportunity_id, tasks_client=tasks_client)
    except OpportunityNotFoundError:
        raise HTTPException(status_code=404, detail="Opportunity not found")
    except MeetingSourceUnavailableError as e:
        logger.error(f"Recalculation failed for {opportunity_id}: {e}")
        raise HTTPException(
            status_code=502,
            detail=f"Meeting source unavailable: {e.source.value}",
        )


@router.post("/dates/recalculate-batch", response_model=BatchRecalculationResponse)
async def recalculate_dates_batch(
    request: BatchRecalculationRequest,
    tasks_client: GoogleTasksClient = Depends(get_tasks_client),
):
    """Recalculate dates for several opportunities, reporting each outcome."""
    results = await recalculate_opportunity_dates_batch(
        request.opportunity_ids,
        tasks_client=tasks_client,
    )
    failed = sum(1 for item in results if item.error)

    return BatchRecalculationResponse(
        results=results,
        succeeded=len(results) - failed,
        failed=failed,
    )


@router.post("/{opportunity_id}/meetings/synced", status_code=202)
async def meetings_synced(
    opportunity_id: UUID,
    request: MeetingSyncedRequest,
    background_tasks: BackgroundTasks,
    tasks_client: GoogleTasksClient = Depends(get_tasks_client),
):
    """Queue a recalculation after a meeting source finished syncing or parsing."""
    logger.info(f"Meetings synced for opportunity {opportunity_id} (source={request.source.value})")
    background_tasks.add_task(_recalculate_in_background, opportunity_id, tasks_client)
    return {"queued": True, "opportunity_id": str(opportunity_id)}


@router.patch("/{opportunity_id}/next-call-date", response_model=ScheduleStateResponse)
async def update_next_call_date(opportunity_id: UUID, request: ManualNextCallDateRequest):
    """Manually set or clear the next call date."""
    try:
        set_manual_next_call_date(opportunity_id, request.next_call_date)
        return get_schedule_state(opportunity_id)
    except OpportunityNotFoundError:
        raise HTTPException(status_code=404, detail="Opportunity not found")


@router.get("/{opportunity_id}/schedule", response_model=ScheduleStateResponse)
async def get_schedule(opportunity_id: UUID):
    """Get the stored schedule fields and whether the CBC date is due."""
    try:
        return get_schedule_state(opportunity_id)
    except OpportunityNotFoundError:
        raise HTTPException(status_code=404, detail="Opportunity not found")


@router.post("/{opportunity_id}/cbc-task/sync", response_model=CbcTaskResult)
async def sync_cbc_task(
    opportunity_id: UUID,
    tasks_client: GoogleTasksClient = Depends(get_tasks_client),
):
    """Bring the CBC reminder task in line with the stored CBC date."""
    return await process_cbc_task_for_opportunity(opportunity_id, tasks_client=tasks_client)
