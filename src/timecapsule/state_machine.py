"""Decides what happens to a deliverable after it fires."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from timecapsule.models import (
    Deliverable,
    DeliveryOutcome,
    DeliveryStatus,
    RecurrenceInterval,
    StatusVocabulary,
)
from timecapsule.recurrence import occurrence_instant, parse_interval


logger = logging.getLogger(__name__)


@dataclass
class ReleasePlan:
    """What the current fire means for the deliverable, decided before sending.

    Attributes:
        next_fire_instant: Following occurrence if the item keeps recurring.
        is_final: True if no occurrence follows this one.
    """

    next_fire_instant: Optional[datetime]
    is_final: bool


@dataclass
class ReleaseTransition:
    """New state of a deliverable after a fire, as a store patch."""

    status: str
    next_fire_instant: Optional[datetime]
    patch: dict[str, Any]

    @property
    def keeps_recurring(self) -> bool:
        return self.next_fire_instant is not None


class ReleaseStateMachine:
    """Shared transition logic for every deliverable family.

    | kind      | condition | next status                  | next fire      |
    |-----------|-----------|------------------------------|----------------|
    | one-shot  | any       | success if sent else failure | none           |
    | recurring | not final | active                       | next occurrence|
    | recurring | final     | exhausted if sent else fail  | none           |

    A recurring fire is final once ``occurrence_count + 1`` reaches
    ``recurrence_count`` or the next occurrence lies after
    ``recurrence_end_date``. The end date is inclusive.
    """

    def __init__(
        self,
        default_timezone: str = "America/New_York",
        default_interval: RecurrenceInterval = RecurrenceInterval.YEARLY,
    ) -> None:
        self.default_timezone = default_timezone
        self.default_interval = default_interval

    def effective_timezone(self, deliverable: Deliverable) -> str:
        return deliverable.timezone or self.default_timezone

    def plan(self, deliverable: Deliverable) -> ReleasePlan:
        """Work out whether this fire is the last one and when the next is.

        Called before anything is sent, so a bad zone or release time leaves
        the item untouched.

        Raises:
            InvalidTimeError: If the zone or local release time is invalid.
        """
        if not deliverable.is_recurring:
            return ReleasePlan(next_fire_instant=None, is_final=True)

        fired = deliverable.occurrence_count + 1
        if deliverable.recurrence_count is not None and fired >= deliverable.recurrence_count:
            return ReleasePlan(next_fire_instant=None, is_final=True)

        timezone = self.effective_timezone(deliverable)
        interval = parse_interval(deliverable.recurrence_interval, self.default_interval)
        # Derived from the anchor so month-end clamping never carries forward.
        upcoming = occurrence_instant(
            deliverable.release_local_date,
            deliverable.release_local_time,
            timezone,
            interval,
            fired,
        )

        end = deliverable.recurrence_end_date
        if end is not None and upcoming > end:
            return ReleasePlan(next_fire_instant=None, is_final=True)

        return ReleasePlan(next_fire_instant=upcoming, is_final=False)

    def apply(
        self,
        deliverable: Deliverable,
        statuses: StatusVocabulary,
        plan: ReleasePlan,
        outcome: DeliveryOutcome,
        now: datetime,
    ) -> ReleaseTransition:
        """Combine the plan and the delivery outcome into the item's next state.

        Occurrence and attempt counters always advance; delivery fields only
        describe the latest attempt.
        """
        if plan.is_final:
            if deliverable.is_recurring:
                status = statuses.exhausted if outcome.sent else statuses.failure
            else:
                status = statuses.success if outcome.sent else statuses.failure
            next_fire = None
        else:
            status = statuses.active
            next_fire = plan.next_fire_instant

        patch: dict[str, Any] = {
            "status": status,
            "next_fire_instant": next_fire,
            "occurrence_count": deliverable.occurrence_count + 1,
            "delivery_attempts": deliverable.delivery_attempts + 1,
            "last_delivery_attempt": now,
            "delivery_status": (
                DeliveryStatus.SENT.value if outcome.sent else DeliveryStatus.FAILED.value
            ),
            "delivery_error": None if outcome.sent else outcome.detail,
        }
        if outcome.sent:
            patch["last_sent_at"] = now

        logger.debug(f"{deliverable.label}: {deliverable.status} -> {status}")
        return ReleaseTransition(status=status, next_fire_instant=next_fire, patch=patch)
