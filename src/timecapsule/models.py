"""Data models for deferred memorial deliverables."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from timecapsule.errors import InvalidTimeError, ValidationError
from timecapsule.local_time import parse_local_date, parse_local_time


class DeliverableKind(Enum):
    """The two deliverable families handled by the engine."""

    SCHEDULED_MESSAGE = "scheduled_message"
    VIDEO_CAPSULE = "video_capsule"


class RecurrenceInterval(Enum):
    """Calendar step between occurrences of a recurring deliverable."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MessageStatus(Enum):
    """Lifecycle status of a scheduled message."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    COMPLETED = "completed"


class CapsuleStatus(Enum):
    """Lifecycle status of a video capsule."""

    SCHEDULED = "scheduled"
    RELEASED = "released"
    VIEWED = "viewed"
    EXPIRED = "expired"


class DeliveryStatus(Enum):
    """Outcome of the most recent delivery attempt."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DeliveryErrorKind(Enum):
    """Why a delivery attempt did not go out."""

    NO_RECIPIENT = "no_recipient"
    TRANSPORT_FAILURE = "transport_failure"
    OWNER_NOT_FOUND = "owner_not_found"


@dataclass
class Memorial:
    """The memorial that owns deliverables and supplies their default zone."""

    name: str
    timezone: Optional[str] = None
    creator_email: Optional[str] = None
    id: Optional[int] = None

    def validate(self) -> None:
        """Validate the memorial data.

        Raises:
            ValidationError: If validation fails.
        """
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("name must be a non-empty string")
        if self.timezone is not None and not isinstance(self.timezone, str):
            raise ValidationError("timezone must be a string or None")

    def __post_init__(self) -> None:
        """Validate after initialization."""
        self.validate()


@dataclass
class MessageContent:
    """Payload fields specific to a scheduled message."""

    recipient_name: str
    body: str
    event_type: str = "custom"
    recipient_email: Optional[str] = None
    media_ref: Optional[str] = None
    media_type: Optional[str] = None


@dataclass
class CapsuleContent:
    """Payload fields specific to a video capsule."""

    title: str
    milestone_type: str
    video_ref: str
    recipient_name: Optional[str] = None


DeliverableContent = Union[MessageContent, CapsuleContent]


@dataclass
class Deliverable:
    """A deferred release, either a scheduled message or a video capsule.

    ``next_fire_instant`` is the authoritative "next due" time in UTC. For
    recurring items it is a cache of the occurrence derived from the local
    release date, local release time, zone, interval and occurrence count.
    """

    kind: DeliverableKind
    owner_id: int
    release_local_date: str
    release_local_time: str
    content: DeliverableContent
    status: str
    timezone: Optional[str] = None
    is_recurring: bool = False
    recurrence_interval: Optional[str] = None
    recurrence_count: Optional[int] = None
    recurrence_end_date: Optional[datetime] = None
    next_fire_instant: Optional[datetime] = None
    occurrence_count: int = 0
    delivery_status: str = DeliveryStatus.PENDING.value
    delivery_error: Optional[str] = None
    delivery_attempts: int = 0
    last_delivery_attempt: Optional[datetime] = None
    last_sent_at: Optional[datetime] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def validate(self) -> None:
        """Validate the deliverable data.

        Raises:
            ValidationError: If validation fails.
        """
        if not isinstance(self.kind, DeliverableKind):
            raise ValidationError("kind must be a DeliverableKind enum")
        if self.kind is DeliverableKind.SCHEDULED_MESSAGE:
            if not isinstance(self.content, MessageContent):
                raise ValidationError("scheduled messages require MessageContent")
        elif not isinstance(self.content, CapsuleContent):
            raise ValidationError("video capsules require CapsuleContent")
        try:
            parse_local_date(self.release_local_date)
            parse_local_time(self.release_local_time)
        except InvalidTimeError as e:
            raise ValidationError(str(e)) from e
        if not isinstance(self.is_recurring, bool):
            raise ValidationError("is_recurring must be a boolean")
        if self.recurrence_count is not None:
            if not isinstance(self.recurrence_count, int) or self.recurrence_count < 1:
                raise ValidationError("recurrence_count must be a positive integer or None")
        if not isinstance(self.occurrence_count, int) or self.occurrence_count < 0:
            raise ValidationError("occurrence_count must be a non-negative integer")
        if not isinstance(self.delivery_attempts, int) or self.delivery_attempts < 0:
            raise ValidationError("delivery_attempts must be a non-negative integer")

    def __post_init__(self) -> None:
        """Validate after initialization."""
        self.validate()

    @property
    def label(self) -> str:
        """Short identifier used in log lines."""
        return f"{self.kind.value} {self.id}"


@dataclass
class DeliveryOutcome:
    """Result of handing a deliverable to the notification sender."""

    sent: bool
    error: Optional[DeliveryErrorKind] = None
    detail: Optional[str] = None
    attempts: int = 1

    @classmethod
    def success(cls, attempts: int = 1) -> "DeliveryOutcome":
        return cls(sent=True, attempts=attempts)

    @classmethod
    def failure(
        cls,
        error: DeliveryErrorKind,
        detail: str,
        attempts: int = 1,
    ) -> "DeliveryOutcome":
        return cls(sent=False, error=error, detail=detail, attempts=attempts)


@dataclass
class StatusVocabulary:
    """Maps the semantic release states onto a family's stored status values."""

    active: str
    success: str
    failure: str
    exhausted: str


MESSAGE_STATUSES = StatusVocabulary(
    active=MessageStatus.PENDING.value,
    success=MessageStatus.SENT.value,
    failure=MessageStatus.FAILED.value,
    exhausted=MessageStatus.COMPLETED.value,
)

CAPSULE_STATUSES = StatusVocabulary(
    active=CapsuleStatus.SCHEDULED.value,
    success=CapsuleStatus.RELEASED.value,
    failure=CapsuleStatus.EXPIRED.value,
    exhausted=CapsuleStatus.RELEASED.value,
)


def statuses_for(kind: DeliverableKind) -> StatusVocabulary:
    """Return the status vocabulary of a deliverable family."""
    if kind is DeliverableKind.SCHEDULED_MESSAGE:
        return MESSAGE_STATUSES
    return CAPSULE_STATUSES
