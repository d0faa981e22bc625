"""Background loop that fires due deliverables."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from timecapsule.config import AppConfig, SchedulerConfig
from timecapsule.delivery import DeliveryExecutor
from timecapsule.families import ReleaseFamily, default_families
from timecapsule.local_time import format_local
from timecapsule.models import Deliverable, DeliverableKind, DeliveryOutcome, RecurrenceInterval
from timecapsule.notifier import Notifier
from timecapsule.recurrence import parse_interval
from timecapsule.repository import DeliverableRepository, MemorialRepository
from timecapsule.state_machine import ReleaseStateMachine, ReleaseTransition


logger = logging.getLogger(__name__)

UpdateFunc = Callable[[DeliverableKind, int, dict[str, Any]], None]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(ZoneInfo("UTC"))


class SchedulerState(Enum):
    """Lifecycle state of the release scheduler."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class ReleaseResult:
    """Result of firing one deliverable."""

    kind: DeliverableKind
    deliverable_id: int
    outcome: DeliveryOutcome
    transition: ReleaseTransition


@dataclass
class FamilyReport:
    """What happened to one family during a pass."""

    kind: DeliverableKind
    found: int = 0
    results: list[ReleaseResult] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)
    scan_error: Optional[str] = None

    @property
    def processed(self) -> int:
        return len(self.results)


@dataclass
class PassReport:
    """Summary of one scan-execute-transition pass."""

    started_at: datetime
    families: dict[DeliverableKind, FamilyReport] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return sum(report.processed for report in self.families.values())

    @property
    def failed(self) -> int:
        return sum(len(report.errors) for report in self.families.values())


class ReleaseScheduler:
    """Periodically fires every due scheduled message and video capsule.

    One instance owns one asyncio task. Items are processed one at a time;
    an exception on one item is logged and leaves that item as it was, so
    it is picked up again on the next tick. Running two schedulers against
    the same store fires due items twice.
    """

    def __init__(
        self,
        families: list[ReleaseFamily],
        executor: DeliveryExecutor,
        state_machine: ReleaseStateMachine,
        update_deliverable: UpdateFunc,
        config: Optional[SchedulerConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            families: Deliverable families to process on every pass.
            executor: Sends notifications for due items.
            state_machine: Computes each item's next state.
            update_deliverable: Atomically applies a patch to a stored item.
            config: Tick interval and scan batch size.
            clock: Source of the current UTC instant.
        """
        self.families = families
        self.executor = executor
        self.state_machine = state_machine
        self.update_deliverable = update_deliverable
        self.config = config or SchedulerConfig()
        self.clock = clock

        self._state = SchedulerState.STOPPED
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @classmethod
    def from_components(
        cls,
        deliverables: DeliverableRepository,
        memorials: MemorialRepository,
        notifier: Notifier,
        config: Optional[AppConfig] = None,
        clock: Clock = utc_now,
    ) -> "ReleaseScheduler":
        """Wire a scheduler from the store, the notifier and app configuration."""
        config = config or AppConfig()
        default_interval = parse_interval(
            config.scheduler.default_recurrence_interval, RecurrenceInterval.YEARLY
        )
        return cls(
            families=default_families(
                deliverables, notifier, config.notifier.public_base_url
            ),
            executor=DeliveryExecutor(memorials.get_by_id, config.delivery),
            state_machine=ReleaseStateMachine(
                default_timezone=config.scheduler.default_timezone,
                default_interval=default_interval,
            ),
            update_deliverable=deliverables.update_deliverable,
            config=config.scheduler,
            clock=clock,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    def is_running(self) -> bool:
        """Check if the scheduler is active."""
        return self._state is SchedulerState.RUNNING

    async def start(self) -> None:
        """Run one pass immediately, then one every tick interval."""
        if self.is_running():
            logger.warning("Release scheduler already running")
            return

        self._state = SchedulerState.RUNNING
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Started release scheduler (tick interval: {self.config.tick_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the periodic tick and wait for the loop to exit.

        An item whose delivery has started is finished and committed first;
        due items not yet reached stay due for the next start.
        """
        self._state = SchedulerState.STOPPED
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Stopped release scheduler")

    async def _run_loop(self) -> None:
        """Main loop that repeats a full pass every tick."""
        while self.is_running():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in release loop: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.config.tick_interval_seconds
                )
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> PassReport:
        """Run a single pass over every family.

        Returns:
            PassReport with per-family results.
        """
        report = PassReport(started_at=self.clock())
        for family in self.families:
            report.families[family.kind] = await self._process_family(family)
        logger.info(
            f"Release pass finished: {report.processed} processed, {report.failed} failed"
        )
        return report

    async def _process_family(self, family: ReleaseFamily) -> FamilyReport:
        """Scan one family and fire each due item."""
        family_report = FamilyReport(kind=family.kind)
        now = self.clock()
        try:
            due_items = family.load_due(now, self.config.batch_size)
        except Exception as e:
            logger.error(f"Failed to scan due {family.name} items: {e}", exc_info=True)
            family_report.scan_error = str(e)
            return family_report

        family_report.found = len(due_items)
        if due_items:
            logger.info(f"Found {len(due_items)} due {family.name} items")

        for deliverable in due_items:
            if self._stop_event.is_set():
                logger.info(f"Stop requested, leaving remaining {family.name} items due")
                break
            try:
                result = await self._fire(family, deliverable)
                family_report.results.append(result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Error processing {deliverable.label}, leaving it for the next tick: {e}",
                    exc_info=True,
                )
                family_report.errors[deliverable.id or 0] = str(e)

        return family_report

    async def _fire(self, family: ReleaseFamily, deliverable: Deliverable) -> ReleaseResult:
        """Plan, deliver and commit one item.

        Raises:
            InvalidTimeError: If the next occurrence cannot be computed. Nothing
                has been sent or stored.
            StoreError: If the owner cannot be read or the update fails.
        """
        if deliverable.id is None:
            raise ValueError("Cannot fire a deliverable without ID")

        plan = self.state_machine.plan(deliverable)
        outcome = await self.executor.attempt(family, deliverable)
        transition = self.state_machine.apply(
            deliverable, family.statuses, plan, outcome, self.clock()
        )
        self.update_deliverable(family.kind, deliverable.id, transition.patch)

        if transition.keeps_recurring:
            timezone = self.state_machine.effective_timezone(deliverable)
            logger.info(
                f"Fired {deliverable.label} (delivery: {transition.patch['delivery_status']}), "
                f"next occurrence {format_local(transition.next_fire_instant, timezone)}"
            )
        else:
            logger.info(f"Fired {deliverable.label}, marked {transition.status}")

        return ReleaseResult(
            kind=family.kind,
            deliverable_id=deliverable.id,
            outcome=outcome,
            transition=transition,
        )
