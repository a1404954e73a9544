"""Collect an opportunity's meetings from every meeting source.

Sources are read in a fixed order (calendar, call recordings, notes) and
concatenated without deduplication. A failing source fails the whole
collection: a schedule computed from partial data would silently move the
last/next call dates.
"""

from typing import Callable
from uuid import UUID

from tracker.core.logging import get_logger
from tracker.core.schemas_schedule import MeetingEvent, MeetingSource
from tracker.db import calendar_events as calendar_db
from tracker.db import gong_calls as gong_db
from tracker.db import granola_notes as granola_db

logger = get_logger(__name__)


class MeetingSourceUnavailableError(Exception):
    """Raised when a meeting source cannot be read."""

    def __init__(self, source: MeetingSource, cause: Exception):
        self.source = source
        self.cause = cause
        super().__init__(f"Meeting source {source.value} unavailable: {cause}")


def _read_source(
    source: MeetingSource,
    fetch: Callable[[UUID], list[dict]],
    date_field: str,
    opportunity_id: UUID,
) -> list[MeetingEvent]:
    try:
        rows = fetch(opportunity_id)
    except Exception as e:
        logger.error(f"Failed to read {source.value} meetings for opportunity {opportunity_id}: {e}")
        raise MeetingSourceUnavailableError(source, e) from e

    return [
        MeetingEvent(date=row[date_field], source=source, event_id=str(row["id"]))
        for row in rows
    ]


def collect_meetings(opportunity_id: UUID) -> list[MeetingEvent]:
    """
    Gather all meetings linked to an opportunity.

    Calendar events are limited to external ones (at least one attendee
    outside the organization); call recordings and notes are taken as is.

    Args:
        opportunity_id: Opportunity UUID

    Returns:
        Calendar events, then call recordings, then notes, each in store order

    Raises:
        MeetingSourceUnavailableError: If any source fails
    """
    meetings: list[MeetingEvent] = []
    meetings.extend(
        _read_source(MeetingSource.CALENDAR, calendar_db.list_external_events, "start_time", opportunity_id)
    )
    meetings.extend(
        _read_source(MeetingSource.CALL_RECORDING, gong_db.list_calls, "meeting_date", opportunity_id)
    )
    meetings.extend(
        _read_source(MeetingSource.NOTES, granola_db.list_notes, "meeting_date", opportunity_id)
    )

    logger.debug(f"Collected {len(meetings)} meetings for opportunity {opportunity_id}")
    return meetings
