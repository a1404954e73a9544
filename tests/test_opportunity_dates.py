"""Behavioral tests for opportunity date recalculation against the fake DB."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from tracker.core import opportunity_dates
from tracker.core.meeting_collector import MeetingSourceUnavailableError
from tracker.core.opportunity_dates import (
    OpportunityNotFoundError,
    get_schedule_state,
    recalculate_opportunity_dates,
    recalculate_opportunity_dates_batch,
    set_manual_next_call_date,
)
from tracker.core.schemas_schedule import MeetingSource
from tests.fakes.fake_db import OPPORTUNITY_ID, FakeTasksClient, fake_db, fake_db_patches


def _iso(days: float) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).replace(microsecond=0).isoformat()


def _calendar_event(event_id: str, days: float, opportunity_id=OPPORTUNITY_ID) -> dict:
    return {"id": event_id, "opportunity_id": str(opportunity_id), "start_time": _iso(days), "is_external": True}


@pytest.fixture(autouse=True)
def reset_fake_db():
    """Reset fake DB before each test."""
    fake_db.reset()


@pytest.fixture
def mock_db_helpers():
    """Route every store to the fake DB and give everyone a Google credential."""
    patches = fake_db_patches(fake_db) + [
        patch("tracker.core.cbc_tasks.get_valid_access_token", new=AsyncMock(return_value="access-token")),
    ]

    for p in patches:
        p.start()

    yield

    for p in patches:
        p.stop()


@pytest.fixture
def tasks_client():
    return FakeTasksClient()


class TestRecalculateOpportunityDates:
    @pytest.mark.asyncio
    async def test_missing_opportunity_writes_nothing(self, mock_db_helpers, tasks_client):
        with pytest.raises(OpportunityNotFoundError):
            await recalculate_opportunity_dates(uuid4(), await_task_sync=True, tasks_client=tasks_client)

        assert fake_db.schedule_updates == []
        assert tasks_client.calls == []

    @pytest.mark.asyncio
    async def test_source_failure_writes_nothing(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -7))

        with patch("tracker.db.granola_notes.list_notes", side_effect=RuntimeError("timeout")):
            with pytest.raises(MeetingSourceUnavailableError):
                await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        assert fake_db.schedule_updates == []
        assert fake_db.opportunities[str(OPPORTUNITY_ID)]["last_call_date"] is None

    @pytest.mark.asyncio
    async def test_persists_dates_and_creates_task(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -7))
        fake_db.gong_calls.append({"id": "call-9", "opportunity_id": str(OPPORTUNITY_ID), "meeting_date": _iso(7)})

        result = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        assert result.last_call_date_event_id == "past"
        assert result.next_call_date_source == MeetingSource.CALL_RECORDING
        assert result.cbc_date == result.last_call_date + (result.next_call_date - result.last_call_date) / 2

        assert len(fake_db.schedule_updates) == 1
        stored = fake_db.opportunities[str(OPPORTUNITY_ID)]
        assert stored["cbc"] == result.cbc_date
        assert stored["cbc_last_calculated"] == result.calculated_at
        assert stored["next_call_date_last_calculated"] == result.calculated_at
        assert stored["needs_next_call_scheduled"] is False

        assert len(fake_db.tasks) == 1
        assert fake_db.tasks[0]["task_source"] == f"cbc:{OPPORTUNITY_ID}"
        assert len(tasks_client.live) == 1

    @pytest.mark.asyncio
    async def test_task_sync_failure_does_not_fail_recalculation(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -7))
        fake_db.calendar_events.append(_calendar_event("next", 7))
        tasks_client.fail_create = 500

        result = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        assert result.cbc_date is not None
        assert fake_db.opportunities[str(OPPORTUNITY_ID)]["cbc"] == result.cbc_date
        assert fake_db.tasks == []

    @pytest.mark.asyncio
    async def test_task_sync_exception_is_contained(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()

        with patch(
            "tracker.core.opportunity_dates.process_cbc_task_for_opportunity",
            new=AsyncMock(side_effect=RuntimeError("boom")),
        ):
            result = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        assert result.cbc_date is None
        assert len(fake_db.schedule_updates) == 1

    @pytest.mark.asyncio
    async def test_dispatched_sync_runs_in_background(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -3))
        fake_db.calendar_events.append(_calendar_event("next", 3))

        await recalculate_opportunity_dates(OPPORTUNITY_ID, tasks_client=tasks_client)
        pending = list(opportunity_dates._pending_syncs)
        assert pending

        await asyncio.gather(*pending)

        assert len(fake_db.tasks) == 1

    @pytest.mark.asyncio
    async def test_recalculation_is_idempotent(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -10))
        fake_db.granola_notes.append({"id": "n1", "opportunity_id": str(OPPORTUNITY_ID), "meeting_date": _iso(4)})

        first = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)
        second = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        ignore = {"calculated_at"}
        assert first.model_dump(exclude=ignore) == second.model_dump(exclude=ignore)
        assert len(fake_db.tasks) == 1
        assert len(tasks_client.live) == 1
        assert [c[0] for c in tasks_client.calls] == ["create"]

    @pytest.mark.asyncio
    async def test_past_only_flags_next_call_needed(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -2))

        result = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        assert result.needs_next_call_scheduled is True
        assert result.cbc_date is None
        assert fake_db.opportunities[str(OPPORTUNITY_ID)]["needs_next_call_scheduled"] is True

    @pytest.mark.asyncio
    async def test_internal_calendar_events_are_ignored(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        internal = _calendar_event("standup", -1)
        internal["is_external"] = False
        fake_db.calendar_events.append(internal)

        result = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        assert result.last_call_date is None

    @pytest.mark.asyncio
    async def test_recalculation_overwrites_manual_next_call(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("next", 5))
        set_manual_next_call_date(OPPORTUNITY_ID, datetime.now(UTC) + timedelta(days=30))

        result = await recalculate_opportunity_dates(OPPORTUNITY_ID, await_task_sync=True, tasks_client=tasks_client)

        stored = fake_db.opportunities[str(OPPORTUNITY_ID)]
        assert stored["next_call_date"] == result.next_call_date
        assert stored["next_call_date_source"] == MeetingSource.CALENDAR

    @pytest.mark.asyncio
    async def test_without_task_sync_dispatches_nothing(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -3))
        fake_db.calendar_events.append(_calendar_event("next", 3))

        with patch("tracker.core.opportunity_dates.dispatch_cbc_task_sync") as dispatch, \
                patch("tracker.core.opportunity_dates.run_cbc_task_sync", new=AsyncMock()) as run:
            result = await recalculate_opportunity_dates(OPPORTUNITY_ID, tasks_client=tasks_client, sync_tasks=False)

        dispatch.assert_not_called()
        run.assert_not_awaited()
        assert fake_db.opportunities[str(OPPORTUNITY_ID)]["cbc"] == result.cbc_date
        assert fake_db.tasks == []
        assert tasks_client.calls == []


class TestBatchRecalculation:
    @pytest.mark.asyncio
    async def test_partial_failure_is_reported_per_item(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        missing = uuid4()

        results = await recalculate_opportunity_dates_batch([OPPORTUNITY_ID, missing], tasks_client=tasks_client)

        assert [r.opportunity_id for r in results] == [OPPORTUNITY_ID, missing]
        assert results[0].result is not None
        assert results[0].error is None
        assert results[1].result is None
        assert "not found" in results[1].error

    @pytest.mark.asyncio
    async def test_batch_awaits_task_sync(self, mock_db_helpers, tasks_client):
        other = uuid4()
        for opportunity_id in (OPPORTUNITY_ID, other):
            fake_db.add_opportunity(opportunity_id)
            fake_db.calendar_events.append(_calendar_event(f"p-{opportunity_id}", -4, opportunity_id))
            fake_db.calendar_events.append(_calendar_event(f"n-{opportunity_id}", 4, opportunity_id))

        results = await recalculate_opportunity_dates_batch([OPPORTUNITY_ID, other], tasks_client=tasks_client)

        assert all(r.error is None for r in results)
        assert len(fake_db.tasks) == 2

    @pytest.mark.asyncio
    async def test_batch_shares_one_tasks_client(self, mock_db_helpers):
        opportunity_ids = [OPPORTUNITY_ID, uuid4(), uuid4()]
        for opportunity_id in opportunity_ids:
            fake_db.add_opportunity(opportunity_id)
            fake_db.calendar_events.append(_calendar_event(f"p-{opportunity_id}", -4, opportunity_id))
            fake_db.calendar_events.append(_calendar_event(f"n-{opportunity_id}", 4, opportunity_id))

        shared = FakeTasksClient()
        with patch("tracker.core.opportunity_dates.GoogleTasksClient", return_value=shared) as batch_client, \
                patch("tracker.core.cbc_tasks.GoogleTasksClient", new=MagicMock()) as per_item_client:
            results = await recalculate_opportunity_dates_batch(opportunity_ids)

        assert all(r.error is None for r in results)
        batch_client.assert_called_once_with()
        per_item_client.assert_not_called()
        assert len(shared.live) == 3
        assert [c[0] for c in shared.calls] == ["create"] * 3

    @pytest.mark.asyncio
    async def test_batch_without_task_sync_builds_no_client(self, mock_db_helpers):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -4))
        fake_db.calendar_events.append(_calendar_event("next", 4))

        with patch("tracker.core.opportunity_dates.GoogleTasksClient") as batch_client:
            results = await recalculate_opportunity_dates_batch([OPPORTUNITY_ID], sync_tasks=False)

        assert results[0].result.cbc_date is not None
        batch_client.assert_not_called()
        assert fake_db.tasks == []


class TestManualNextCallDate:
    def test_sets_manual_fields(self, mock_db_helpers):
        fake_db.add_opportunity()
        when = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)

        set_manual_next_call_date(OPPORTUNITY_ID, when)

        stored = fake_db.opportunities[str(OPPORTUNITY_ID)]
        assert stored["next_call_date"] == when
        assert stored["next_call_date_source"] == MeetingSource.MANUAL
        assert stored["next_call_date_manually_set"] is True
        assert stored["next_call_date_event_id"] is None

    def test_missing_opportunity(self, mock_db_helpers):
        with pytest.raises(OpportunityNotFoundError):
            set_manual_next_call_date(uuid4(), None)


class TestScheduleState:
    def test_reports_due_status(self, mock_db_helpers):
        fake_db.add_opportunity(cbc=datetime.now(UTC) - timedelta(days=2))

        state = get_schedule_state(OPPORTUNITY_ID)

        assert state.cbc_due is True
        assert state.cbc_overdue is True
        assert state.days_until_cbc == -2

    def test_without_cbc(self, mock_db_helpers):
        fake_db.add_opportunity()

        state = get_schedule_state(OPPORTUNITY_ID)

        assert state.cbc is None
        assert state.cbc_due is False
        assert state.days_until_cbc is None


class TestPendingSyncs:
    @pytest.mark.asyncio
    async def test_wait_lets_finished_syncs_complete(self, mock_db_helpers, tasks_client):
        fake_db.add_opportunity()
        fake_db.calendar_events.append(_calendar_event("past", -3))
        fake_db.calendar_events.append(_calendar_event("next", 3))

        await recalculate_opportunity_dates(OPPORTUNITY_ID, tasks_client=tasks_client)
        cancelled = await opportunity_dates.wait_for_pending_syncs(timeout=5)

        assert cancelled == 0
        assert len(fake_db.tasks) == 1

    @pytest.mark.asyncio
    async def test_wait_cancels_stuck_syncs(self):
        async def stuck(opportunity_id, tasks_client=None):
            await asyncio.sleep(60)

        with patch("tracker.core.opportunity_dates.run_cbc_task_sync", new=stuck):
            task = opportunity_dates.dispatch_cbc_task_sync(uuid4())
            cancelled = await opportunity_dates.wait_for_pending_syncs(timeout=0.01)

        assert cancelled == 1
        with pytest.raises(asyncio.CancelledError):
            await task
