"""Capability records for the two deliverable families.

Scheduled messages and video capsules differ only in how they are loaded,
what notification they produce and which status words they store. Each
family is described by a ReleaseFamily value rather than a subclass, and
the executor, state machine and scheduler work on any family.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from timecapsule.models import (
    CAPSULE_STATUSES,
    MESSAGE_STATUSES,
    CapsuleContent,
    Deliverable,
    DeliverableKind,
    Memorial,
    MessageContent,
    StatusVocabulary,
)
from timecapsule.notifier import CapsuleNoticePayload, MessagePayload, Notifier
from timecapsule.repository import DeliverableRepository


Payload = Union[MessagePayload, CapsuleNoticePayload]


@dataclass
class ReleaseFamily:
    """How one deliverable family is scanned, notified and labelled."""

    kind: DeliverableKind
    statuses: StatusVocabulary
    load_due: Callable[[datetime, int], list[Deliverable]]
    build_payload: Callable[[Deliverable, Memorial], Optional[Payload]]
    send: Callable[[Payload], Awaitable[bool]]

    @property
    def name(self) -> str:
        return self.kind.value


def build_message_payload(deliverable: Deliverable, memorial: Memorial) -> Optional[MessagePayload]:
    """Build the outgoing message, or None if it has no recipient address."""
    content = deliverable.content
    if not isinstance(content, MessageContent):
        raise TypeError(f"{deliverable.label} does not carry message content")
    if not content.recipient_email:
        return None
    return MessagePayload(
        recipient=content.recipient_email,
        body=content.body,
        sender_name=memorial.name,
        recipient_name=content.recipient_name,
        event_type=content.event_type,
        media_ref=content.media_ref,
        media_type=content.media_type,
    )


def make_capsule_payload_builder(
    public_base_url: str = "",
) -> Callable[[Deliverable, Memorial], Optional[CapsuleNoticePayload]]:
    """Create the capsule notice builder; the creator is always the recipient."""

    def build_capsule_payload(
        deliverable: Deliverable, memorial: Memorial
    ) -> Optional[CapsuleNoticePayload]:
        content = deliverable.content
        if not isinstance(content, CapsuleContent):
            raise TypeError(f"{deliverable.label} does not carry capsule content")
        if not memorial.creator_email:
            return None
        return CapsuleNoticePayload(
            recipient=memorial.creator_email,
            memorial_name=memorial.name,
            title=content.title,
            milestone=content.milestone_type,
            recipient_name=content.recipient_name,
            memorial_url=f"{public_base_url}/memorials/{memorial.id}",
        )

    return build_capsule_payload


def scheduled_message_family(
    repository: DeliverableRepository, notifier: Notifier
) -> ReleaseFamily:
    async def send(payload: Payload) -> bool:
        if not isinstance(payload, MessagePayload):
            raise TypeError(f"Expected MessagePayload, got {type(payload).__name__}")
        return await notifier.send_deferred_message(payload)

    return ReleaseFamily(
        kind=DeliverableKind.SCHEDULED_MESSAGE,
        statuses=MESSAGE_STATUSES,
        load_due=repository.find_due_scheduled_messages,
        build_payload=build_message_payload,
        send=send,
    )


def video_capsule_family(
    repository: DeliverableRepository,
    notifier: Notifier,
    public_base_url: str = "",
) -> ReleaseFamily:
    async def send(payload: Payload) -> bool:
        if not isinstance(payload, CapsuleNoticePayload):
            raise TypeError(f"Expected CapsuleNoticePayload, got {type(payload).__name__}")
        return await notifier.send_capsule_release_notice(payload)

    return ReleaseFamily(
        kind=DeliverableKind.VIDEO_CAPSULE,
        statuses=CAPSULE_STATUSES,
        load_due=repository.find_due_video_capsules,
        build_payload=make_capsule_payload_builder(public_base_url),
        send=send,
    )


def default_families(
    repository: DeliverableRepository,
    notifier: Notifier,
    public_base_url: str = "",
) -> list[ReleaseFamily]:
    """Both families, messages first."""
    return [
        scheduled_message_family(repository, notifier),
        video_capsule_family(repository, notifier, public_base_url),
    ]
