"""Creates deliverables with their first fire instant already computed."""

import logging
from datetime import datetime
from typing import Optional

from timecapsule.errors import InvalidTimeError, ValidationError
from timecapsule.local_time import is_valid_timezone, to_utc
from timecapsule.models import (
    CapsuleContent,
    Deliverable,
    DeliverableKind,
    Memorial,
    MessageContent,
    RecurrenceInterval,
    statuses_for,
)
from timecapsule.recurrence import occurrence_instant, parse_interval
from timecapsule.repository import DeliverableRepository, MemorialRepository


logger = logging.getLogger(__name__)


class MemorialNotFoundError(ValidationError):
    """Raised when a deliverable references a memorial that does not exist."""


class ReleaseCatalog:
    """Authoring-side helper for scheduled messages and video capsules."""

    def __init__(
        self,
        memorials: MemorialRepository,
        deliverables: DeliverableRepository,
        default_timezone: str = "America/New_York",
        default_interval: RecurrenceInterval = RecurrenceInterval.YEARLY,
    ) -> None:
        """Initialize the catalog.

        Args:
            memorials: Memorial repository.
            deliverables: Deliverable repository.
            default_timezone: Zone used when neither item nor memorial has one.
            default_interval: Step used for unknown recurrence intervals.
        """
        self.memorials = memorials
        self.deliverables = deliverables
        self.default_timezone = default_timezone
        self.default_interval = default_interval

    def create_scheduled_message(
        self,
        memorial_id: int,
        content: MessageContent,
        release_local_date: str,
        release_local_time: str = "09:00",
        timezone: Optional[str] = None,
        is_recurring: bool = False,
        recurrence_interval: Optional[str] = None,
        recurrence_count: Optional[int] = None,
        recurrence_end_date: Optional[datetime] = None,
    ) -> Deliverable:
        """Create a message to be delivered on an event date.

        Raises:
            MemorialNotFoundError: If the memorial does not exist.
            ValidationError: If the date, time, zone or recurrence is invalid.
        """
        return self._create(
            DeliverableKind.SCHEDULED_MESSAGE,
            memorial_id,
            content,
            release_local_date,
            release_local_time,
            timezone,
            is_recurring,
            recurrence_interval,
            recurrence_count,
            recurrence_end_date,
        )

    def create_video_capsule(
        self,
        memorial_id: int,
        content: CapsuleContent,
        release_local_date: str,
        release_local_time: str = "00:00",
        timezone: Optional[str] = None,
        is_recurring: bool = False,
        recurrence_interval: Optional[str] = None,
        recurrence_count: Optional[int] = None,
        recurrence_end_date: Optional[datetime] = None,
    ) -> Deliverable:
        """Create a video capsule unlocked on a milestone date.

        Raises:
            MemorialNotFoundError: If the memorial does not exist.
            ValidationError: If the date, time, zone or recurrence is invalid.
        """
        return self._create(
            DeliverableKind.VIDEO_CAPSULE,
            memorial_id,
            content,
            release_local_date,
            release_local_time,
            timezone,
            is_recurring,
            recurrence_interval,
            recurrence_count,
            recurrence_end_date,
        )

    def update_owner_timezone(self, memorial_id: int, timezone: str) -> int:
        """Move a memorial to a new zone and re-derive cached fire instants.

        Only active items that inherit the memorial's zone are affected; items
        with a zone of their own keep their instants.

        Returns:
            Number of deliverables whose fire instant was recomputed.

        Raises:
            MemorialNotFoundError: If the memorial does not exist.
            ValidationError: If the zone is invalid.
        """
        if not is_valid_timezone(timezone):
            raise ValidationError(f"Invalid timezone: {timezone}")
        if not self.memorials.update_timezone(memorial_id, timezone):
            raise MemorialNotFoundError(f"Memorial with ID {memorial_id} not found")
        logger.info(f"Updated timezone for memorial {memorial_id} to {timezone}")

        updated = 0
        for kind in DeliverableKind:
            items = self.deliverables.list_active_by_owner(
                kind, memorial_id, inherited_zone_only=True
            )
            for item in items:
                next_fire = self._derive_fire_instant(item, timezone)
                self.deliverables.update_deliverable(
                    kind, item.id or 0, {"next_fire_instant": next_fire}
                )
                updated += 1
        return updated

    def _create(
        self,
        kind: DeliverableKind,
        memorial_id: int,
        content: MessageContent | CapsuleContent,
        release_local_date: str,
        release_local_time: str,
        timezone: Optional[str],
        is_recurring: bool,
        recurrence_interval: Optional[str],
        recurrence_count: Optional[int],
        recurrence_end_date: Optional[datetime],
    ) -> Deliverable:
        memorial = self._get_memorial(memorial_id)
        effective_timezone = timezone or memorial.timezone or self.default_timezone

        if is_recurring:
            # Unknown intervals are accepted and logged; they step by the default.
            parse_interval(recurrence_interval, self.default_interval)
        else:
            recurrence_interval = None
            recurrence_count = None
            recurrence_end_date = None

        try:
            next_fire = to_utc(release_local_date, release_local_time, effective_timezone)
        except InvalidTimeError as e:
            raise ValidationError(str(e)) from e

        deliverable = Deliverable(
            kind=kind,
            owner_id=memorial_id,
            release_local_date=release_local_date,
            release_local_time=release_local_time,
            content=content,
            status=statuses_for(kind).active,
            timezone=timezone,
            is_recurring=is_recurring,
            recurrence_interval=recurrence_interval,
            recurrence_count=recurrence_count,
            recurrence_end_date=recurrence_end_date,
            next_fire_instant=next_fire,
        )
        created = self.deliverables.create(deliverable)
        logger.info(
            f"Created {created.label} for memorial {memorial_id}, "
            f"first release {release_local_date} {release_local_time} {effective_timezone}"
        )
        return created

    def _derive_fire_instant(self, item: Deliverable, timezone: str) -> datetime:
        if not item.is_recurring:
            return to_utc(item.release_local_date, item.release_local_time, timezone)
        interval = parse_interval(item.recurrence_interval, self.default_interval)
        return occurrence_instant(
            item.release_local_date,
            item.release_local_time,
            timezone,
            interval,
            item.occurrence_count,
        )

    def _get_memorial(self, memorial_id: int) -> Memorial:
        memorial = self.memorials.get_by_id(memorial_id)
        if memorial is None:
            raise MemorialNotFoundError(f"Memorial with ID {memorial_id} not found")
        return memorial
