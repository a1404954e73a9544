"""Database operations for Gong call recordings."""

from uuid import UUID

from tracker.db.supabase_client import get_supabase


def list_calls(opportunity_id: UUID) -> list[dict]:
    """List call recordings linked to an opportunity, ordered by meeting date then id."""
    supabase = get_supabase()
    result = (
        supabase.table("gong_calls")
        .select("id, meeting_date")
        .eq("opportunity_id", str(opportunity_id))
        .order("meeting_date", desc=False)
        .order("id", desc=False)
        .execute()
    )
    return result.data or []
