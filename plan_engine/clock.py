"""Time helpers: UTC now and an agency's local wall clock."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from .models import Agency


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def agency_now(agency: Agency | None, now: datetime) -> datetime:
    """`now` converted to the agency's IANA timezone (UTC when unknown).

    Raises zoneinfo.ZoneInfoNotFoundError for a malformed timezone name.
    """
    if agency is None:
        return now.astimezone(timezone.utc)
    return now.astimezone(ZoneInfo(agency.timezone))


def agency_today(agency: Agency | None, now: datetime) -> date:
    return agency_now(agency, now).date()
