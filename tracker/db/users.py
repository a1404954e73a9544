"""Database operations for users and organizations."""

from typing import Optional
from uuid import UUID

from tracker.db.supabase_client import get_supabase


def get_user(user_id: UUID) -> Optional[dict]:
    """Get a user by ID."""
    supabase = get_supabase()
    result = (
        supabase.table("users")
        .select("id, email, organization_id, auto_create_meeting_tasks")
        .eq("id", str(user_id))
        .execute()
    )
    return result.data[0] if result.data else None


def list_organization_users(organization_id: UUID) -> list[dict]:
    """List users (id, email) belonging to an organization."""
    supabase = get_supabase()
    result = (
        supabase.table("users")
        .select("id, email")
        .eq("organization_id", str(organization_id))
        .execute()
    )
    return result.data or []


def list_organizations_with_domain() -> list[dict]:
    """List organizations that have an email domain configured."""
    supabase = get_supabase()
    result = (
        supabase.table("organizations")
        .select("id, name, domain")
        .not_.is_("domain", "null")
        .execute()
    )
    return result.data or []
