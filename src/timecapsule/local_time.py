"""Conversion between owner-local wall-clock time and UTC instants."""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timecapsule.errors import InvalidTimeError


UTC = ZoneInfo("UTC")


def resolve_zone(timezone: str) -> ZoneInfo:
    """Look up an IANA time zone.

    Args:
        timezone: IANA zone name (e.g. "America/New_York").

    Returns:
        The matching ZoneInfo.

    Raises:
        InvalidTimeError: If the zone name is empty or unknown.
    """
    if not isinstance(timezone, str) or not timezone.strip():
        raise InvalidTimeError("Time zone must be a non-empty string")
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimeError(f"Invalid time zone: {timezone}") from e


def is_valid_timezone(timezone: str) -> bool:
    """Check whether a time zone name can be resolved."""
    try:
        resolve_zone(timezone)
    except InvalidTimeError:
        return False
    return True


def _normalize_time(local_time: str) -> str:
    parts = local_time.split(":")
    if len(parts) == 2:
        return f"{local_time}:00"
    return local_time


def parse_local_date(local_date: str) -> date:
    """Parse a YYYY-MM-DD calendar date.

    Raises:
        InvalidTimeError: If the string is not a valid calendar date.
    """
    try:
        return date.fromisoformat(local_date)
    except (TypeError, ValueError) as e:
        raise InvalidTimeError(f"Invalid local date: {local_date!r}") from e


def parse_local_time(local_time: str) -> time:
    """Parse an HH:MM or HH:MM:SS wall-clock time.

    Raises:
        InvalidTimeError: If the string is not a valid time of day.
    """
    try:
        normalized = _normalize_time(local_time)
        if len(normalized.split(":")) != 3:
            raise ValueError(local_time)
        return time.fromisoformat(normalized)
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidTimeError(f"Invalid local time: {local_time!r}") from e


def to_utc(local_date: str, local_time: str, timezone: str) -> datetime:
    """Interpret a civil date and time as wall-clock time in a zone.

    DST gaps and overlaps are resolved with fold=0: an ambiguous time
    (clocks going back) maps to its first, earlier instant, and a skipped
    time (clocks going forward) is read with the offset in force before
    the gap, so it lands one hour later on the wall clock. For example
    02:30 on a spring-forward day in America/New_York becomes 07:30 UTC.

    Args:
        local_date: Calendar date in YYYY-MM-DD format.
        local_time: Time of day in HH:MM or HH:MM:SS format.
        timezone: IANA time zone name.

    Returns:
        Timezone-aware datetime in UTC.

    Raises:
        InvalidTimeError: If the date, time or zone is invalid.
    """
    tz = resolve_zone(timezone)
    civil = datetime.combine(
        parse_local_date(local_date),
        parse_local_time(local_time),
    )
    return civil.replace(tzinfo=tz).astimezone(UTC)


def to_local_date_string(utc_instant: datetime, timezone: str) -> str:
    """Project a UTC instant onto the calendar date of a zone.

    Args:
        utc_instant: Aware datetime, or naive datetime assumed to be UTC.
        timezone: IANA time zone name.

    Returns:
        Local calendar date in YYYY-MM-DD format.

    Raises:
        InvalidTimeError: If the zone is invalid.
    """
    tz = resolve_zone(timezone)
    if utc_instant.tzinfo is None:
        utc_instant = utc_instant.replace(tzinfo=UTC)
    return utc_instant.astimezone(tz).date().isoformat()


def format_local(utc_instant: datetime, timezone: str) -> str:
    """Format a UTC instant as a local "YYYY-MM-DD HH:MM" string for logs."""
    try:
        tz = resolve_zone(timezone)
    except InvalidTimeError:
        tz = UTC
    if utc_instant.tzinfo is None:
        utc_instant = utc_instant.replace(tzinfo=UTC)
    return utc_instant.astimezone(tz).strftime("%Y-%m-%d %H:%M %Z")
