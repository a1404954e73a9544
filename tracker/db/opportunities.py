"""Database operations for opportunities and their schedule fields."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from tracker.core.logging import get_logger
from tracker.core.schemas_schedule import CLOSED_STAGES
from tracker.db.supabase_client import get_supabase

logger = get_logger(__name__)

SCHEDULE_FIELDS = (
    "last_call_date",
    "last_call_date_source",
    "last_call_date_event_id",
    "next_call_date",
    "next_call_date_source",
    "next_call_date_event_id",
    "next_call_date_manually_set",
    "next_call_date_last_calculated",
    "cbc",
    "cbc_last_calculated",
    "needs_next_call_scheduled",
)


def _to_column(value: Any) -> Any:
    """Convert datetimes and enums to their PostgREST representation."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def get_opportunity(opportunity_id: UUID) -> Optional[dict]:
    """Get an opportunity by ID."""
    supabase = get_supabase()
    result = (
        supabase.table("opportunities")
        .select("*")
        .eq("id", str(opportunity_id))
        .execute()
    )
    return result.data[0] if result.data else None


def get_opportunity_with_account(opportunity_id: UUID) -> Optional[dict]:
    """Get an opportunity's name with its account (id, name) embedded."""
    supabase = get_supabase()
    result = (
        supabase.table("opportunities")
        .select("id, name, account_id, accounts(id, name)")
        .eq("id", str(opportunity_id))
        .execute()
    )
    return result.data[0] if result.data else None


def update_schedule_state(opportunity_id: UUID, fields: dict[str, Any]) -> Optional[dict]:
    """
    Write schedule fields onto an opportunity in a single update.

    Args:
        opportunity_id: Opportunity UUID
        fields: Subset of SCHEDULE_FIELDS to write

    Returns:
        Updated row, or None if nothing matched
    """
    unknown = set(fields) - set(SCHEDULE_FIELDS)
    if unknown:
        raise ValueError(f"Not schedule fields: {sorted(unknown)}")

    supabase = get_supabase()
    row = {key: _to_column(value) for key, value in fields.items()}
    result = (
        supabase.table("opportunities")
        .update(row)
        .eq("id", str(opportunity_id))
        .execute()
    )
    return result.data[0] if result.data else None


def list_active_opportunities(limit: Optional[int] = None) -> list[dict]:
    """List id and name of every opportunity that is not closed."""
    supabase = get_supabase()
    query = (
        supabase.table("opportunities")
        .select("id, name")
        .not_.in_("stage", sorted(CLOSED_STAGES))
        .order("created_at", desc=False)
    )
    if limit:
        query = query.limit(limit)

    result = query.execute()
    return result.data or []
