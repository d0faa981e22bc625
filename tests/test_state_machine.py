"""Tests for the shared release state machine."""

import pytest

from timecapsule.errors import InvalidTimeError
from timecapsule.models import (
    CAPSULE_STATUSES,
    MESSAGE_STATUSES,
    CapsuleContent,
    Deliverable,
    DeliverableKind,
    DeliveryErrorKind,
    DeliveryOutcome,
    MessageContent,
    RecurrenceInterval,
)
from timecapsule.recurrence import occurrence_instant
from timecapsule.state_machine import ReleaseStateMachine

from conftest import utc

NOW = utc(2024, 12, 25, 14, 1)
SENT = DeliveryOutcome.success()
FAILED = DeliveryOutcome.failure(DeliveryErrorKind.TRANSPORT_FAILURE, "relay down")


def make_message(**overrides) -> Deliverable:
    fields = dict(
        kind=DeliverableKind.SCHEDULED_MESSAGE,
        owner_id=1,
        release_local_date="2024-12-25",
        release_local_time="09:00",
        content=MessageContent(
            recipient_name="Sam", body="Merry Christmas", recipient_email="sam@example.com"
        ),
        status=MESSAGE_STATUSES.active,
        timezone="America/New_York",
        next_fire_instant=utc(2024, 12, 25, 14, 0),
        id=7,
    )
    fields.update(overrides)
    return Deliverable(**fields)


def make_capsule(**overrides) -> Deliverable:
    fields = dict(
        kind=DeliverableKind.VIDEO_CAPSULE,
        owner_id=1,
        release_local_date="2025-06-01",
        release_local_time="00:00",
        content=CapsuleContent(title="Graduation", milestone_type="graduation", video_ref="v/1.mp4"),
        status=CAPSULE_STATUSES.active,
        timezone="America/New_York",
        next_fire_instant=utc(2025, 6, 1, 4, 0),
        id=3,
    )
    fields.update(overrides)
    return Deliverable(**fields)


@pytest.fixture
def machine() -> ReleaseStateMachine:
    return ReleaseStateMachine()


def fire(machine, deliverable, statuses, outcome=SENT, now=NOW):
    plan = machine.plan(deliverable)
    return machine.apply(deliverable, statuses, plan, outcome, now)


class TestOneShot:
    def test_message_sent(self, machine):
        transition = fire(machine, make_message(), MESSAGE_STATUSES)

        assert transition.status == "sent"
        assert transition.next_fire_instant is None
        assert transition.patch["next_fire_instant"] is None
        assert transition.patch["occurrence_count"] == 1
        assert transition.patch["delivery_attempts"] == 1
        assert transition.patch["delivery_status"] == "sent"
        assert transition.patch["delivery_error"] is None
        assert transition.patch["last_sent_at"] == NOW
        assert transition.patch["last_delivery_attempt"] == NOW

    def test_message_failed(self, machine):
        transition = fire(machine, make_message(), MESSAGE_STATUSES, FAILED)

        assert transition.status == "failed"
        assert transition.patch["delivery_status"] == "failed"
        assert transition.patch["delivery_error"] == "relay down"
        assert "last_sent_at" not in transition.patch

    def test_capsule_released(self, machine):
        assert fire(machine, make_capsule(), CAPSULE_STATUSES).status == "released"

    def test_capsule_expired_on_failure(self, machine):
        assert fire(machine, make_capsule(), CAPSULE_STATUSES, FAILED).status == "expired"

    def test_one_shot_does_not_need_a_valid_zone(self, machine):
        deliverable = make_message(timezone="Not/AZone")
        assert fire(machine, deliverable, MESSAGE_STATUSES).status == "sent"


class TestRecurring:
    def test_yearly_stays_active(self, machine):
        deliverable = make_message(is_recurring=True, recurrence_interval="yearly")
        transition = fire(machine, deliverable, MESSAGE_STATUSES)

        assert transition.status == "pending"
        assert transition.keeps_recurring
        assert transition.next_fire_instant == utc(2025, 12, 25, 14, 0)
        assert transition.patch["occurrence_count"] == 1

    def test_failure_keeps_recurring(self, machine):
        deliverable = make_message(is_recurring=True, recurrence_interval="yearly")
        transition = fire(machine, deliverable, MESSAGE_STATUSES, FAILED)

        assert transition.status == "pending"
        assert transition.next_fire_instant == utc(2025, 12, 25, 14, 0)
        assert transition.patch["delivery_status"] == "failed"

    def test_count_cap_completes_on_third_fire(self, machine):
        deliverable = make_message(
            is_recurring=True,
            recurrence_interval="daily",
            recurrence_count=3,
            occurrence_count=2,
        )
        transition = fire(machine, deliverable, MESSAGE_STATUSES)

        assert transition.status == "completed"
        assert transition.next_fire_instant is None
        assert transition.patch["occurrence_count"] == 3

    def test_count_cap_with_failed_last_fire(self, machine):
        deliverable = make_message(
            is_recurring=True,
            recurrence_interval="daily",
            recurrence_count=3,
            occurrence_count=2,
        )
        assert fire(machine, deliverable, MESSAGE_STATUSES, FAILED).status == "failed"

    def test_three_fires_walk_to_completion(self, machine):
        deliverable = make_message(
            is_recurring=True, recurrence_interval="daily", recurrence_count=3
        )
        statuses = []
        for _ in range(3):
            transition = fire(machine, deliverable, MESSAGE_STATUSES)
            statuses.append(transition.status)
            deliverable.status = transition.status
            deliverable.next_fire_instant = transition.next_fire_instant
            deliverable.occurrence_count = transition.patch["occurrence_count"]

        assert statuses == ["pending", "pending", "completed"]

    def test_end_date_is_inclusive(self, machine):
        deliverable = make_message(
            is_recurring=True,
            recurrence_interval="yearly",
            recurrence_end_date=utc(2025, 12, 25, 14, 0),
        )
        transition = fire(machine, deliverable, MESSAGE_STATUSES)

        assert transition.status == "pending"
        assert transition.next_fire_instant == utc(2025, 12, 25, 14, 0)

    def test_end_date_reached(self, machine):
        deliverable = make_message(
            is_recurring=True,
            recurrence_interval="yearly",
            recurrence_end_date=utc(2025, 12, 1),
        )
        assert fire(machine, deliverable, MESSAGE_STATUSES).status == "completed"

    def test_recurring_capsule_exhausts_to_released(self, machine):
        deliverable = make_capsule(
            is_recurring=True, recurrence_interval="yearly", recurrence_count=1
        )
        assert fire(machine, deliverable, CAPSULE_STATUSES).status == "released"

    def test_next_occurrence_ignores_cached_instant(self, machine):
        deliverable = make_message(
            is_recurring=True, recurrence_interval="weekly", next_fire_instant=None
        )
        plan = machine.plan(deliverable)
        assert plan.next_fire_instant == utc(2025, 1, 1, 14, 0)

    def test_invalid_zone_raises_before_sending(self, machine):
        deliverable = make_message(
            is_recurring=True, recurrence_interval="daily", timezone="Not/AZone"
        )
        with pytest.raises(InvalidTimeError):
            machine.plan(deliverable)

    def test_default_zone_when_unset(self):
        machine = ReleaseStateMachine(default_timezone="Asia/Tokyo")
        deliverable = make_message(
            is_recurring=True,
            recurrence_interval="daily",
            timezone=None,
            next_fire_instant=utc(2024, 12, 25, 0, 0),
        )
        assert machine.plan(deliverable).next_fire_instant == utc(2024, 12, 26, 0, 0)

    def test_month_end_anchor_is_not_clamped_forward(self, machine):
        """Jan 31 monthly fires on Feb 29, then Mar 31 rather than Mar 29."""
        deliverable = make_message(
            release_local_date="2024-01-31",
            is_recurring=True,
            recurrence_interval="monthly",
            next_fire_instant=utc(2024, 1, 31, 14, 0),
        )
        first = fire(machine, deliverable, MESSAGE_STATUSES)
        assert first.next_fire_instant == utc(2024, 2, 29, 14, 0)

        deliverable.next_fire_instant = first.next_fire_instant
        deliverable.occurrence_count = first.patch["occurrence_count"]
        second = fire(machine, deliverable, MESSAGE_STATUSES)

        assert second.next_fire_instant == utc(2024, 3, 31, 13, 0)
        assert second.next_fire_instant == occurrence_instant(
            "2024-01-31", "09:00", "America/New_York", RecurrenceInterval.MONTHLY, 2
        )
