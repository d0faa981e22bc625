"""Recurrence stepping anchored to owner-local calendar dates."""

import logging
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from timecapsule.local_time import parse_local_date, to_local_date_string, to_utc
from timecapsule.models import RecurrenceInterval


logger = logging.getLogger(__name__)

_STEPS = {
    RecurrenceInterval.DAILY: relativedelta(days=1),
    RecurrenceInterval.WEEKLY: relativedelta(weeks=1),
    RecurrenceInterval.MONTHLY: relativedelta(months=1),
    RecurrenceInterval.YEARLY: relativedelta(years=1),
}


def parse_interval(
    value: Optional[str],
    default: RecurrenceInterval = RecurrenceInterval.YEARLY,
) -> RecurrenceInterval:
    """Map a stored interval string to a RecurrenceInterval.

    Unknown values such as "custom" step by the default interval rather than
    being dropped. A warning is logged so misconfigured items stay visible.

    Args:
        value: Raw interval string from the store.
        default: Interval used for missing or unknown values.

    Returns:
        The recognised interval, or the default.
    """
    if value is None:
        return default
    try:
        return RecurrenceInterval(value.strip().lower())
    except ValueError:
        logger.warning(
            f"Unrecognised recurrence interval {value!r}, stepping {default.value}"
        )
        return default


def step_local_date(local_date: str, interval: RecurrenceInterval, times: int = 1) -> str:
    """Advance a YYYY-MM-DD date by a number of calendar intervals.

    Month and year steps clamp to the last day of the target month, so
    2024-01-31 plus one month is 2024-02-29.
    """
    start = parse_local_date(local_date)
    return (start + _STEPS[interval] * times).isoformat()


def next_occurrence(
    last_fire_utc: datetime,
    interval: RecurrenceInterval,
    timezone: str,
    release_local_time: str,
) -> datetime:
    """Compute the occurrence after ``last_fire_utc``.

    The previous instant is projected onto the owner's local calendar,
    stepped in local calendar arithmetic, recombined with the fixed local
    release time and converted back to UTC. The wall-clock time therefore
    stays put across DST changes while the UTC instant moves by the offset.

    Args:
        last_fire_utc: Instant of the occurrence that just fired.
        interval: Calendar step to apply.
        timezone: IANA zone the release time is expressed in.
        release_local_time: Wall-clock release time (HH:MM or HH:MM:SS).

    Returns:
        Aware UTC datetime of the next occurrence.

    Raises:
        InvalidTimeError: If the zone or release time is invalid.
    """
    local_date = to_local_date_string(last_fire_utc, timezone)
    next_local_date = step_local_date(local_date, interval)
    return to_utc(next_local_date, release_local_time, timezone)


def occurrence_instant(
    release_local_date: str,
    release_local_time: str,
    timezone: str,
    interval: RecurrenceInterval,
    index: int,
) -> datetime:
    """Derive the instant of the ``index``-th occurrence (0-based) from its anchor."""
    local_date = step_local_date(release_local_date, interval, index)
    return to_utc(local_date, release_local_time, timezone)
