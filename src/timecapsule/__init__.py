"""TimeCapsule - scheduled release engine for memorial messages and video capsules."""

from timecapsule.errors import (
    InvalidTimeError,
    ReleaseError,
    StoreError,
    ValidationError,
)
from timecapsule.models import (
    CapsuleContent,
    CapsuleStatus,
    Deliverable,
    DeliverableKind,
    DeliveryErrorKind,
    DeliveryOutcome,
    DeliveryStatus,
    Memorial,
    MessageContent,
    MessageStatus,
    RecurrenceInterval,
)
from timecapsule.local_time import to_local_date_string, to_utc
from timecapsule.recurrence import next_occurrence, parse_interval
from timecapsule.repository import (
    DatabaseConnectionManager,
    DeliverableRepository,
    MemorialRepository,
)
from timecapsule.notifier import (
    CapsuleNoticePayload,
    HttpNotifier,
    MessagePayload,
    Notifier,
)
from timecapsule.families import ReleaseFamily, default_families
from timecapsule.delivery import DeliveryExecutor
from timecapsule.state_machine import ReleasePlan, ReleaseStateMachine, ReleaseTransition
from timecapsule.scheduler import PassReport, ReleaseScheduler, SchedulerState
from timecapsule.catalog import MemorialNotFoundError, ReleaseCatalog


__all__ = [
    "CapsuleContent",
    "CapsuleNoticePayload",
    "CapsuleStatus",
    "DatabaseConnectionManager",
    "default_families",
    "Deliverable",
    "DeliverableKind",
    "DeliverableRepository",
    "DeliveryErrorKind",
    "DeliveryExecutor",
    "DeliveryOutcome",
    "DeliveryStatus",
    "HttpNotifier",
    "InvalidTimeError",
    "Memorial",
    "MemorialNotFoundError",
    "MemorialRepository",
    "MessageContent",
    "MessagePayload",
    "MessageStatus",
    "next_occurrence",
    "Notifier",
    "parse_interval",
    "PassReport",
    "RecurrenceInterval",
    "ReleaseCatalog",
    "ReleaseError",
    "ReleaseFamily",
    "ReleasePlan",
    "ReleaseScheduler",
    "ReleaseStateMachine",
    "ReleaseTransition",
    "SchedulerState",
    "StoreError",
    "to_local_date_string",
    "to_utc",
    "ValidationError",
]
