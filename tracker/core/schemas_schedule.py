"""Pydantic schemas for next-call-date and CBC scheduling."""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================


class MeetingSource(str, Enum):
    """Where a last/next call date came from."""
    CALENDAR = "auto_calendar"        # External Google Calendar event
    CALL_RECORDING = "auto_gong"      # Gong call recording
    NOTES = "auto_granola"            # Granola meeting notes
    MANUAL = "manual"                 # Set by a user on the opportunity


class OpportunityStage(str, Enum):
    """Pipeline stage of an opportunity."""
    PROSPECT = "prospect"
    QUALIFICATION = "qualification"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


CLOSED_STAGES = frozenset({OpportunityStage.CLOSED_WON.value, OpportunityStage.CLOSED_LOST.value})


# ============================================================================
# Calculation models
# ============================================================================


def _assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps stored without an offset are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class MeetingEvent(BaseModel):
    """A meeting from any source, normalized for date calculation."""

    model_config = ConfigDict(frozen=True)

    date: datetime
    source: MeetingSource
    event_id: str

    @field_validator("date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _assume_utc(value)


class CallAttribution(BaseModel):
    """A selected call date and the event it came from."""

    date: Optional[datetime] = None
    source: Optional[MeetingSource] = None
    event_id: Optional[str] = None


class CbcCalculation(BaseModel):
    """Result of CBC (Contact Before Call) date calculation."""

    cbc_date: Optional[datetime] = Field(None, description="Midpoint between last and next call")
    last_call_date: Optional[datetime] = None
    last_call_date_source: Optional[MeetingSource] = None
    last_call_date_event_id: Optional[str] = None
    next_call_date: Optional[datetime] = None
    next_call_date_source: Optional[MeetingSource] = None
    next_call_date_event_id: Optional[str] = None
    needs_next_call_scheduled: bool = Field(
        False, description="A past meeting exists but nothing is scheduled"
    )


class OpportunityDatesCalculation(CbcCalculation):
    """Full recalculation result for one opportunity."""

    calculated_at: datetime


class BatchRecalculationItem(BaseModel):
    """Per-opportunity outcome of a batch recalculation."""

    opportunity_id: UUID
    result: Optional[OpportunityDatesCalculation] = None
    error: Optional[str] = None


# ============================================================================
# CBC task models
# ============================================================================


class CbcTaskData(BaseModel):
    """Data needed to create or update a CBC reminder task."""

    opportunity_id: UUID
    cbc_date: datetime
    last_call_date: Optional[datetime] = None
    next_call_date: Optional[datetime] = None

    @field_validator("cbc_date", "last_call_date", "next_call_date")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _assume_utc(value)


class CbcTaskResult(BaseModel):
    """Outcome of one CBC task synchronization."""

    created: bool = False
    updated: bool = False
    deleted: bool = False
    task_id: Optional[str] = None
    skipped: Optional[str] = Field(None, description="Reason nothing was changed")
    error: Optional[str] = None


class CbcTaskDeleteResult(BaseModel):
    """Outcome of deleting a CBC reminder task."""

    deleted: bool = False
    error: Optional[str] = None


class GoogleTask(BaseModel):
    """A task as returned by the Google Tasks API."""

    id: str
    title: str
    notes: Optional[str] = None
    due: Optional[datetime] = None
    status: Literal["needsAction", "completed"] = "needsAction"
    position: str = "0"


# ============================================================================
# API request/response models
# ============================================================================


class BatchRecalculationRequest(BaseModel):
    """Recalculate dates for several opportunities."""

    opportunity_ids: list[UUID] = Field(..., min_length=1, max_length=500)


class BatchRecalculationResponse(BaseModel):
    """Batch recalculation results."""

    results: list[BatchRecalculationItem]
    succeeded: int
    failed: int


class ManualNextCallDateRequest(BaseModel):
    """Manually set (or clear) the next call date."""

    next_call_date: Optional[datetime] = None


class MeetingSyncedRequest(BaseModel):
    """Notification that a meeting source finished syncing for an opportunity."""

    source: MeetingSource


class ScheduleStateResponse(BaseModel):
    """Persisted schedule fields of an opportunity plus CBC due status."""

    opportunity_id: UUID
    last_call_date: Optional[datetime] = None
    last_call_date_source: Optional[MeetingSource] = None
    last_call_date_event_id: Optional[str] = None
    next_call_date: Optional[datetime] = None
    next_call_date_source: Optional[MeetingSource] = None
    next_call_date_event_id: Optional[str] = None
    next_call_date_manually_set: bool = False
    next_call_date_last_calculated: Optional[datetime] = None
    cbc: Optional[datetime] = None
    cbc_last_calculated: Optional[datetime] = None
    needs_next_call_scheduled: bool = False
    cbc_due: bool = False
    cbc_overdue: bool = False
    days_until_cbc: Optional[int] = None
