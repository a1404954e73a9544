"""Classify calendar events as external (customer-facing) or internal.

Only external events count as calls for next-call-date purposes. An event is
external when at least one attendee other than the calendar owner has an
email domain outside the organization's domain and its subdomains.
"""

from typing import Optional, Sequence
from uuid import UUID

from pydantic import BaseModel

from tracker.core.logging import get_logger
from tracker.db import calendar_events as calendar_db
from tracker.db import users as users_db

logger = get_logger(__name__)


class ExternalFlagSummary(BaseModel):
    """Counts from re-classifying an organization's calendar events."""

    organization_id: UUID
    events_checked: int = 0
    events_updated: int = 0
    opportunity_ids: list[UUID] = []


def _normalize_domain(domain: str) -> str:
    domain = domain.strip().lower()
    return domain[4:] if domain.startswith("www.") else domain


def is_external_event(
    attendees: Sequence[str],
    organization_domain: Optional[str],
    current_user_email: Optional[str] = None,
) -> bool:
    """
    Decide whether a calendar event includes someone from outside the organization.

    Args:
        attendees: Attendee email addresses
        organization_domain: The organization's email domain (``www.`` is ignored)
        current_user_email: The calendar owner, who never makes an event external

    Returns:
        True if any other attendee's domain is neither the organization domain
        nor one of its subdomains
    """
    if not organization_domain or not attendees:
        return False

    org_domain = _normalize_domain(organization_domain)

    others = [
        email
        for email in attendees
        if not current_user_email or email.lower() != current_user_email.lower()
    ]
    # Only the owner in the meeting
    if not others:
        return False

    for email in others:
        _, _, raw_domain = email.partition("@")
        if not raw_domain:
            continue
        domain = _normalize_domain(raw_domain)
        if domain != org_domain and not domain.endswith(f".{org_domain}"):
            return True

    return False


def recalculate_external_flags(organization: dict) -> ExternalFlagSummary:
    """
    Re-classify every calendar event of an organization's users.

    Only changed flags are written. The summary lists the opportunities whose
    events changed, so their dates can be recalculated.

    Args:
        organization: Row with ``id`` and ``domain``
    """
    summary = ExternalFlagSummary(organization_id=organization["id"])
    touched: set[UUID] = set()

    for user in users_db.list_organization_users(organization["id"]):
        for event in calendar_db.list_user_events(user["id"]):
            summary.events_checked += 1
            correct = is_external_event(
                event.get("attendees") or [],
                organization.get("domain"),
                user.get("email"),
            )
            if bool(event.get("is_external")) == correct:
                continue

            calendar_db.set_external_flag(event["id"], correct)
            summary.events_updated += 1
            if event.get("opportunity_id"):
                touched.add(UUID(str(event["opportunity_id"])))

            logger.info(
                f"Calendar event {event['id']} ({event.get('summary')!r}): "
                f"{'EXTERNAL' if correct else 'INTERNAL'}"
            )

    summary.opportunity_ids = sorted(touched, key=str)
    return summary
