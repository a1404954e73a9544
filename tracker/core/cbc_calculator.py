"""CBC (Contact Before Call) date calculation.

Pure functions over a list of ``MeetingEvent``s:

- last call date: the most recent meeting that has already happened
- next call date: the earliest meeting still ahead
- CBC date: the midpoint between the two, when both exist

Selection uses a stable sort on the meeting date, so when two meetings share a
timestamp the one that comes first in the input wins. The collector emits
calendar events, then call recordings, then notes, each ordered by date and
id, which makes the result deterministic.
"""

from datetime import UTC, date, datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from tracker.core.config import get_settings
from tracker.core.schemas_schedule import CallAttribution, CbcCalculation, MeetingEvent


def calculate_last_call_date(
    meetings: Sequence[MeetingEvent],
    now: Optional[datetime] = None,
) -> CallAttribution:
    """
    Calculate the last call date from meeting sources.

    Args:
        meetings: Meetings from all sources
        now: Reference time (defaults to the current UTC time)

    Returns:
        The most recent meeting at or before ``now``, or an empty attribution
    """
    now = now or datetime.now(UTC)

    past_meetings = [m for m in meetings if m.date <= now]
    if not past_meetings:
        return CallAttribution()

    # Most recent first; stable for equal dates
    past_meetings.sort(key=lambda m: m.date, reverse=True)
    most_recent = past_meetings[0]

    return CallAttribution(
        date=most_recent.date,
        source=most_recent.source,
        event_id=most_recent.event_id,
    )


def calculate_next_call_date(
    meetings: Sequence[MeetingEvent],
    now: Optional[datetime] = None,
) -> CallAttribution:
    """
    Calculate the next call date from meeting sources.

    Args:
        meetings: Meetings from all sources
        now: Reference time (defaults to the current UTC time)

    Returns:
        The earliest meeting strictly after ``now``, or an empty attribution
    """
    now = now or datetime.now(UTC)

    future_meetings = [m for m in meetings if m.date > now]
    if not future_meetings:
        return CallAttribution()

    future_meetings.sort(key=lambda m: m.date)
    earliest = future_meetings[0]

    return CallAttribution(
        date=earliest.date,
        source=earliest.source,
        event_id=earliest.event_id,
    )


def calculate_cbc_midpoint(
    last_call_date: Optional[datetime],
    next_call_date: Optional[datetime],
) -> Optional[datetime]:
    """
    Calculate the CBC date using the midpoint strategy.

    CBC = last call + (next call - last call) / 2

    Example: last call Dec 15, next call Dec 29 gives a CBC of Dec 22.

    Returns:
        The midpoint, or None when either date is missing or the next call
        is not strictly after the last call
    """
    if last_call_date is None or next_call_date is None:
        return None

    gap = next_call_date - last_call_date
    if gap.total_seconds() <= 0:
        return None

    return last_call_date + gap / 2


def calculate_cbc_dates(
    meetings: Sequence[MeetingEvent],
    now: Optional[datetime] = None,
) -> CbcCalculation:
    """
    Calculate all CBC-related dates for an opportunity.

    Args:
        meetings: All meetings (past and future) from all sources
        now: Reference time shared by the last/next selection

    Returns:
        Complete CBC calculation. ``needs_next_call_scheduled`` is set when
        there is a past meeting but nothing scheduled.
    """
    now = now or datetime.now(UTC)

    last_call = calculate_last_call_date(meetings, now=now)
    next_call = calculate_next_call_date(meetings, now=now)

    return CbcCalculation(
        cbc_date=calculate_cbc_midpoint(last_call.date, next_call.date),
        last_call_date=last_call.date,
        last_call_date_source=last_call.source,
        last_call_date_event_id=last_call.event_id,
        next_call_date=next_call.date,
        next_call_date_source=next_call.source,
        next_call_date_event_id=next_call.event_id,
        needs_next_call_scheduled=last_call.date is not None and next_call.date is None,
    )


# ============================================================================
# Due-date helpers
# ============================================================================


def get_cbc_timezone() -> ZoneInfo:
    """Timezone in which CBC calendar days are evaluated."""
    return ZoneInfo(get_settings().CBC_TASK_TIMEZONE)


def _calendar_day(value: datetime, tz: ZoneInfo) -> date:
    return value.astimezone(tz).date()


def _today(tz: ZoneInfo) -> date:
    return datetime.now(tz).date()


def is_cbc_due(
    cbc_date: Optional[datetime],
    today: Optional[date] = None,
    tz: Optional[ZoneInfo] = None,
) -> bool:
    """True if the CBC day is today or has passed."""
    if cbc_date is None:
        return False
    tz = tz or get_cbc_timezone()
    return _calendar_day(cbc_date, tz) <= (today or _today(tz))


def is_cbc_overdue(
    cbc_date: Optional[datetime],
    today: Optional[date] = None,
    tz: Optional[ZoneInfo] = None,
) -> bool:
    """True if the CBC day has passed (today is not overdue)."""
    if cbc_date is None:
        return False
    tz = tz or get_cbc_timezone()
    return _calendar_day(cbc_date, tz) < (today or _today(tz))


def days_until_cbc(
    cbc_date: Optional[datetime],
    today: Optional[date] = None,
    tz: Optional[ZoneInfo] = None,
) -> Optional[int]:
    """Days until the CBC day: negative if overdue, 0 if today, None without a date."""
    if cbc_date is None:
        return None
    tz = tz or get_cbc_timezone()
    return (_calendar_day(cbc_date, tz) - (today or _today(tz))).days
