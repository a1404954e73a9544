"""Database operations for Granola meeting notes."""

from uuid import UUID

from tracker.db.supabase_client import get_supabase


def list_notes(opportunity_id: UUID) -> list[dict]:
    """List meeting notes linked to an opportunity, ordered by meeting date then id."""
    supabase = get_supabase()
    result = (
        supabase.table("granola_notes")
        .select("id, meeting_date")
        .eq("opportunity_id", str(opportunity_id))
        .order("meeting_date", desc=False)
        .order("id", desc=False)
        .execute()
    )
    return result.data or []
