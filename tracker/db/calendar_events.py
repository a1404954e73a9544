"""Database operations for synced Google Calendar events."""

from uuid import UUID

from tracker.core.logging import get_logger
from tracker.db.supabase_client import get_supabase

logger = get_logger(__name__)


def list_external_events(opportunity_id: UUID) -> list[dict]:
    """
    List calendar events linked to an opportunity that include an outside attendee.

    Returns:
        Rows with ``id`` and ``start_time``, ordered by start time then id
    """
    supabase = get_supabase()
    result = (
        supabase.table("calendar_events")
        .select("id, start_time")
        .eq("opportunity_id", str(opportunity_id))
        .eq("is_external", True)
        .order("start_time", desc=False)
        .order("id", desc=False)
        .execute()
    )
    return result.data or []


def list_user_events(user_id: UUID) -> list[dict]:
    """List every calendar event of a user with the fields needed to classify it."""
    supabase = get_supabase()
    result = (
        supabase.table("calendar_events")
        .select("id, summary, attendees, is_external, opportunity_id")
        .eq("user_id", str(user_id))
        .execute()
    )
    return result.data or []


def set_external_flag(event_id: str, is_external: bool) -> None:
    """Update the external flag of a calendar event."""
    supabase = get_supabase()
    (
        supabase.table("calendar_events")
        .update({"is_external": is_external})
        .eq("id", event_id)
        .execute()
    )
