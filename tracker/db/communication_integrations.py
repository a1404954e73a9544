"""Database operations for per-user OAuth integrations."""

from typing import Optional
from uuid import UUID

from tracker.core.logging import get_logger
from tracker.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_integration(user_id: UUID, provider: str = "google") -> Optional[dict]:
    """Get a user's integration settings for a provider."""
    supabase = get_supabase()
    result = (
        supabase.table("communication_integrations")
        .select("*")
        .eq("user_id", str(user_id))
        .eq("provider", provider)
        .execute()
    )
    return result.data[0] if result.data else None


def update_integration(integration_id: UUID, updates: dict) -> Optional[dict]:
    """Update specific fields on an integration."""
    supabase = get_supabase()
    result = (
        supabase.table("communication_integrations")
        .update(updates)
        .eq("id", str(integration_id))
        .execute()
    )
    return result.data[0] if result.data else None
