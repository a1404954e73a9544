"""Google Tasks reminders for CBC (Contact Before Call) dates.

Each open opportunity with a CBC date gets at most one reminder task in its
owner's Google Tasks, tagged locally with ``task_source = "cbc:{opportunity_id}"``.
``process_cbc_task_for_opportunity`` moves that task between two states after
every recalculation:

- no task: opportunity closed, no CBC date, or no next call scheduled
- task due on the CBC day at the configured hour

Concurrent runs for the same opportunity are tolerated: the unique index on
``task_source`` rejects the second local insert, and the losing run removes
the external task it just created.
"""

import logging
from datetime import datetime, time
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx

from tracker.core.cbc_calculator import get_cbc_timezone
from tracker.core.config import get_settings
from tracker.core.google_auth_helper import CredentialUnavailableError, get_valid_access_token
from tracker.core.google_tasks_service import GoogleTasksClient
from tracker.core.logging import get_logger, log_with_context
from tracker.core.schemas_schedule import (
    CLOSED_STAGES,
    CbcTaskData,
    CbcTaskDeleteResult,
    CbcTaskResult,
)
from tracker.db import opportunities as opportunities_db
from tracker.db import tasks as tasks_db
from tracker.db import users as users_db
from tracker.db.tasks import TaskSourceConflictError

logger = get_logger(__name__)

# Failures of the external task API (or of the credential behind it)
EXTERNAL_API_ERRORS = (httpx.HTTPError, CredentialUnavailableError)

VALUE_ADD_IDEAS = (
    "Share relevant industry article or research",
    "Send a quick insight related to their challenge",
    "Forward competitive intel they'd find useful",
    "Make an introduction to someone in your network",
)


def cbc_task_source(opportunity_id: UUID) -> str:
    """Deterministic task_source tag for an opportunity's CBC task."""
    return f"cbc:{opportunity_id}"


def cbc_due_datetime(cbc_date: datetime, tz: ZoneInfo, hour: int) -> datetime:
    """The CBC calendar day (in ``tz``) at ``hour``:00."""
    day = cbc_date.astimezone(tz).date()
    return datetime.combine(day, time(hour=hour), tzinfo=tz)


def _format_day(value: datetime, tz: ZoneInfo) -> str:
    local = value.astimezone(tz)
    return f"{local:%a, %b} {local.day}"


def build_cbc_task_notes(
    company_name: str,
    last_call_date: Optional[datetime],
    next_call_date: Optional[datetime],
    tz: Optional[ZoneInfo] = None,
) -> str:
    """Build task notes with context about the meeting cadence."""
    tz = tz or get_cbc_timezone()
    lines = [f"Time to reach out to {company_name} with value-add content.", ""]

    if last_call_date:
        lines.append(f"Last meeting: {_format_day(last_call_date, tz)}")
    if next_call_date:
        lines.append(f"Next meeting: {_format_day(next_call_date, tz)}")

    lines.append("")
    lines.append("Ideas for value-add touchpoints:")
    lines.extend(f"• {idea}" for idea in VALUE_ADD_IDEAS)

    return "\n".join(lines)


def _same_day(stored_due: Optional[str], due: datetime, tz: ZoneInfo) -> bool:
    if not stored_due:
        return False
    try:
        existing = datetime.fromisoformat(stored_due)
    except ValueError:
        return False
    return existing.astimezone(tz).date() == due.astimezone(tz).date()


def _resolve_task_list(user_id: UUID) -> Optional[dict]:
    """The user's preferred task list, falling back to their oldest one."""
    title = get_settings().CBC_DEFAULT_TASK_LIST_TITLE
    return tasks_db.get_task_list_by_title(user_id, title) or tasks_db.get_oldest_task_list(user_id)


async def create_or_update_cbc_task(
    user_id: UUID,
    data: CbcTaskData,
    tasks_client: GoogleTasksClient,
) -> CbcTaskResult:
    """
    Create the CBC reminder task, or move an existing one to the new CBC day.

    Args:
        user_id: Owner of the opportunity
        data: CBC date and meeting context
        tasks_client: Google Tasks client

    Returns:
        Result describing what changed, why nothing changed, or the API error
    """
    settings = get_settings()
    tz = get_cbc_timezone()
    opportunity_id = data.opportunity_id

    user = users_db.get_user(user_id)
    if not user or not user.get("auto_create_meeting_tasks"):
        return CbcTaskResult(skipped="User has auto_create_meeting_tasks disabled")

    opportunity = opportunities_db.get_opportunity_with_account(opportunity_id)
    account = (opportunity or {}).get("accounts")
    if not account:
        return CbcTaskResult(skipped=f"No account found for opportunity {opportunity_id}")

    company_name = account["name"]
    task_source = cbc_task_source(opportunity_id)
    due = cbc_due_datetime(data.cbc_date, tz, settings.CBC_TASK_DUE_HOUR)
    notes = build_cbc_task_notes(company_name, data.last_call_date, data.next_call_date, tz)

    existing = tasks_db.get_task_by_source(user_id, task_source)
    if existing:
        if existing.get("status") == "completed":
            return CbcTaskResult(task_id=existing["id"], skipped="Existing CBC task already completed")

        if _same_day(existing.get("due"), due, tz):
            return CbcTaskResult(task_id=existing["id"], skipped="CBC task already exists with correct date")

        try:
            await tasks_client.update_task(
                user_id,
                existing["task_lists"]["google_list_id"],
                existing["google_task_id"],
                due=due,
                notes=notes,
            )
        except EXTERNAL_API_ERRORS as e:
            logger.error(f"[CBC Task] Failed to update Google task for opportunity {opportunity_id}: {e}")
            return CbcTaskResult(task_id=existing["id"], error=f"Failed to update task: {e}")

        tasks_db.update_task_record(existing["id"], {"due": due.isoformat(), "notes": notes})
        log_with_context(
            logger,
            logging.INFO,
            f"[CBC Task] Updated CBC task for {company_name}",
            opportunity_id=str(opportunity_id),
            due=due.isoformat(),
        )
        return CbcTaskResult(updated=True, task_id=existing["id"])

    task_list = _resolve_task_list(user_id)
    if not task_list:
        return CbcTaskResult(skipped=f"User {user_id} has no Google Task lists")

    title = f"Reach out to {company_name}"
    try:
        created = await tasks_client.create_task(
            user_id,
            task_list["google_list_id"],
            title=title,
            notes=notes,
            due=due,
        )
    except EXTERNAL_API_ERRORS as e:
        logger.error(f"[CBC Task] Failed to create Google task for opportunity {opportunity_id}: {e}")
        return CbcTaskResult(error=f"Failed to create task: {e}")

    try:
        record = tasks_db.upsert_task_record(
            user_id,
            {
                "task_list_id": task_list["id"],
                "google_task_id": created.id,
                "title": created.title or title,
                "notes": notes,
                # Stored as computed; Google truncates due to a UTC date
                "due": due.isoformat(),
                "status": "needsAction",
                "position": created.position,
                "opportunity_id": str(opportunity_id),
                "account_id": account["id"],
                "task_source": task_source,
            },
        )
    except TaskSourceConflictError:
        logger.info(f"[CBC Task] Task already exists (race condition handled): {opportunity_id}")
        try:
            await tasks_client.delete_task(user_id, task_list["google_list_id"], created.id)
        except EXTERNAL_API_ERRORS as e:
            logger.warning(f"[CBC Task] Could not remove duplicate Google task {created.id}: {e}")
        return CbcTaskResult(skipped="Task already exists (race condition)")

    log_with_context(
        logger,
        logging.INFO,
        f'[CBC Task] Created CBC task: "{title}"',
        opportunity_id=str(opportunity_id),
        user_id=str(user_id),
        due=due.isoformat(),
    )
    return CbcTaskResult(created=True, task_id=record["id"])


async def delete_cbc_task(
    user_id: UUID,
    opportunity_id: UUID,
    tasks_client: GoogleTasksClient,
) -> CbcTaskDeleteResult:
    """
    Delete an opportunity's CBC task from Google Tasks and the local store.

    A task already gone from Google counts as deleted. Any other API failure
    keeps the local record so a later run can retry.
    """
    existing = tasks_db.get_task_by_source(user_id, cbc_task_source(opportunity_id))
    if not existing:
        return CbcTaskDeleteResult(deleted=False)

    try:
        await tasks_client.delete_task(
            user_id,
            existing["task_lists"]["google_list_id"],
            existing["google_task_id"],
        )
    except httpx.HTTPStatusError as e:
        if e.response.status_code != 404:
            logger.error(f"[CBC Task] Failed to delete task for opportunity {opportunity_id}: {e}")
            return CbcTaskDeleteResult(deleted=False, error=str(e))
        logger.info(f"[CBC Task] Google task already gone for opportunity {opportunity_id}")
    except EXTERNAL_API_ERRORS as e:
        logger.error(f"[CBC Task] Failed to delete task for opportunity {opportunity_id}: {e}")
        return CbcTaskDeleteResult(deleted=False, error=str(e))

    tasks_db.delete_task_record(existing["id"])
    logger.info(f"[CBC Task] Deleted CBC task for opportunity {opportunity_id}")
    return CbcTaskDeleteResult(deleted=True)


async def process_cbc_task_for_opportunity(
    opportunity_id: UUID,
    tasks_client: Optional[GoogleTasksClient] = None,
) -> CbcTaskResult:
    """
    Bring an opportunity's CBC task in line with its stored schedule fields.

    Called after every recalculation. Users without a valid Google credential
    are skipped with a reason rather than an error.
    """
    opportunity = opportunities_db.get_opportunity(opportunity_id)
    if not opportunity:
        return CbcTaskResult(error=f"Opportunity {opportunity_id} not found")

    owner_id = UUID(str(opportunity["owner_id"]))

    try:
        await get_valid_access_token(owner_id, "google")
    except CredentialUnavailableError:
        return CbcTaskResult(skipped="User does not have valid Google OAuth token")

    tasks_client = tasks_client or GoogleTasksClient()

    if opportunity.get("stage") in CLOSED_STAGES:
        deletion = await delete_cbc_task(owner_id, opportunity_id, tasks_client)
        return CbcTaskResult(deleted=deletion.deleted, skipped="Opportunity is closed", error=deletion.error)

    if not opportunity.get("cbc") or opportunity.get("needs_next_call_scheduled"):
        deletion = await delete_cbc_task(owner_id, opportunity_id, tasks_client)
        reason = (
            "No next call scheduled"
            if opportunity.get("needs_next_call_scheduled")
            else "No CBC date calculated"
        )
        return CbcTaskResult(deleted=deletion.deleted, skipped=reason, error=deletion.error)

    return await create_or_update_cbc_task(
        owner_id,
        CbcTaskData(
            opportunity_id=opportunity_id,
            cbc_date=opportunity["cbc"],
            last_call_date=opportunity.get("last_call_date"),
            next_call_date=opportunity.get("next_call_date"),
        ),
        tasks_client,
    )
