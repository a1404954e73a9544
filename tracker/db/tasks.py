"""Database operations for locally mirrored Google Tasks.

``tasks.task_source`` carries a unique index. Writers tag rows they own with a
deterministic source (``cbc:{opportunity_id}``) so a second insert for the same
source fails with a unique violation instead of creating a duplicate.
"""

from datetime import UTC, datetime
from typing import Any, Optional
from uuid import UUID

from postgrest.exceptions import APIError

from tracker.core.logging import get_logger
from tracker.db.supabase_client import get_supabase

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"


class TaskSourceConflictError(Exception):
    """Raised when a task with the same task_source already exists."""

    def __init__(self, task_source: Optional[str], message: str = ""):
        self.task_source = task_source
        super().__init__(message or f"Task already exists for source {task_source}")


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ============================================================================
# Task lists
# ============================================================================


def get_task_list_by_title(user_id: UUID, title: str) -> Optional[dict]:
    """Get a user's task list by its title."""
    supabase = get_supabase()
    result = (
        supabase.table("task_lists")
        .select("*")
        .eq("user_id", str(user_id))
        .eq("title", title)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


def get_oldest_task_list(user_id: UUID) -> Optional[dict]:
    """Get a user's first-created task list."""
    supabase = get_supabase()
    result = (
        supabase.table("task_lists")
        .select("*")
        .eq("user_id", str(user_id))
        .order("created_at", desc=False)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


# ============================================================================
# Tasks
# ============================================================================


def get_task_by_source(user_id: UUID, task_source: str) -> Optional[dict]:
    """
    Get a user's task by its source tag, with the owning list's Google ID embedded.

    Returns:
        Task row with ``task_lists: {google_list_id}``, or None
    """
    supabase = get_supabase()
    result = (
        supabase.table("tasks")
        .select("id, google_task_id, task_list_id, due, status, task_lists(google_list_id)")
        .eq("user_id", str(user_id))
        .eq("task_source", task_source)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


def upsert_task_record(user_id: UUID, row: dict[str, Any]) -> dict:
    """
    Insert or update a task keyed on (user_id, google_task_id).

    Args:
        user_id: Owner of the task
        row: Task columns; must include ``google_task_id``

    Returns:
        The stored row

    Raises:
        TaskSourceConflictError: Another row already holds ``row["task_source"]``
        APIError: Any other PostgREST failure
    """
    supabase = get_supabase()
    data = {
        **row,
        "user_id": str(user_id),
        "updated_at": _now(),
    }

    try:
        result = (
            supabase.table("tasks")
            .upsert(data, on_conflict="user_id,google_task_id")
            .execute()
        )
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            raise TaskSourceConflictError(row.get("task_source"), str(e.message)) from e
        raise

    if not result.data:
        raise ValueError("Failed to store task record")
    return result.data[0]


def update_task_record(task_id: UUID, updates: dict[str, Any]) -> Optional[dict]:
    """Update fields of a stored task."""
    supabase = get_supabase()
    result = (
        supabase.table("tasks")
        .update({**updates, "updated_at": _now()})
        .eq("id", str(task_id))
        .execute()
    )
    return result.data[0] if result.data else None


def delete_task_record(task_id: UUID) -> bool:
    """Delete a stored task. Returns True if a row was removed."""
    supabase = get_supabase()
    result = (
        supabase.table("tasks")
        .delete()
        .eq("id", str(task_id))
        .execute()
    )
    return bool(result.data)
