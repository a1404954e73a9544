"""Tests for task and opportunity database operations with mocked Supabase."""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from postgrest.exceptions import APIError

from tracker.core.schemas_schedule import MeetingSource
from tracker.db.opportunities import update_schedule_state
from tracker.db.tasks import (
    TaskSourceConflictError,
    delete_task_record,
    get_task_by_source,
    upsert_task_record,
)


@pytest.fixture
def mock_supabase():
    """Mock Supabase client."""
    with patch("tracker.db.tasks.get_supabase") as mock:
        yield mock.return_value


class TestUpsertTaskRecord:
    def test_upsert_new_task(self, mock_supabase):
        user_id = uuid4()
        row = {"google_task_id": "g-1", "task_source": "cbc:abc", "title": "Reach out to Acme"}
        stored = {"id": str(uuid4()), "user_id": str(user_id), **row}

        mock_response = MagicMock()
        mock_response.data = [stored]
        mock_supabase.table.return_value.upsert.return_value.execute.return_value = mock_response

        result = upsert_task_record(user_id, row)

        assert result == stored
        mock_supabase.table.assert_called_once_with("tasks")
        call_args = mock_supabase.table.return_value.upsert.call_args
        assert call_args[0][0]["user_id"] == str(user_id)
        assert call_args[1]["on_conflict"] == "user_id,google_task_id"

    def test_unique_violation_becomes_conflict(self, mock_supabase):
        error = APIError({
            "message": 'duplicate key value violates unique constraint "tasks_task_source_key"',
            "code": "23505",
            "hint": None,
            "details": None,
        })
        mock_supabase.table.return_value.upsert.return_value.execute.side_effect = error

        with pytest.raises(TaskSourceConflictError) as exc_info:
            upsert_task_record(uuid4(), {"google_task_id": "g-2", "task_source": "cbc:abc"})

        assert exc_info.value.task_source == "cbc:abc"

    def test_other_api_errors_propagate(self, mock_supabase):
        error = APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None})
        mock_supabase.table.return_value.upsert.return_value.execute.side_effect = error

        with pytest.raises(APIError):
            upsert_task_record(uuid4(), {"google_task_id": "g-3", "task_source": "cbc:abc"})

    def test_empty_response_raises(self, mock_supabase):
        mock_response = MagicMock()
        mock_response.data = []
        mock_supabase.table.return_value.upsert.return_value.execute.return_value = mock_response

        with pytest.raises(ValueError):
            upsert_task_record(uuid4(), {"google_task_id": "g-4"})


class TestGetTaskBySource:
    def test_found(self, mock_supabase):
        row = {"id": "t1", "google_task_id": "g-1", "task_lists": {"google_list_id": "list-1"}}
        mock_response = MagicMock()
        mock_response.data = [row]
        (
            mock_supabase.table.return_value.select.return_value
            .eq.return_value.eq.return_value.limit.return_value.execute.return_value
        ) = mock_response

        assert get_task_by_source(uuid4(), "cbc:abc") == row

    def test_not_found(self, mock_supabase):
        mock_response = MagicMock()
        mock_response.data = []
        (
            mock_supabase.table.return_value.select.return_value
            .eq.return_value.eq.return_value.limit.return_value.execute.return_value
        ) = mock_response

        assert get_task_by_source(uuid4(), "cbc:abc") is None


class TestDeleteTaskRecord:
    def test_reports_removed_row(self, mock_supabase):
        mock_response = MagicMock()
        mock_response.data = [{"id": "t1"}]
        mock_supabase.table.return_value.delete.return_value.eq.return_value.execute.return_value = mock_response

        assert delete_task_record(uuid4()) is True


class TestUpdateScheduleState:
    def test_serializes_datetimes_and_enums(self):
        with patch("tracker.db.opportunities.get_supabase") as mock:
            supabase = mock.return_value
            mock_response = MagicMock()
            mock_response.data = [{"id": "o1"}]
            supabase.table.return_value.update.return_value.eq.return_value.execute.return_value = mock_response

            when = datetime(2025, 12, 22, 10, 0, tzinfo=UTC)
            update_schedule_state(uuid4(), {"cbc": when, "next_call_date_source": MeetingSource.MANUAL})

            row = supabase.table.return_value.update.call_args[0][0]
            assert row == {"cbc": when.isoformat(), "next_call_date_source": "manual"}

    def test_rejects_unknown_fields(self):
        with patch("tracker.db.opportunities.get_supabase") as mock:
            with pytest.raises(ValueError):
                update_schedule_state(uuid4(), {"stage": "closed_won"})

            mock.assert_not_called()
