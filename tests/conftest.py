"""Pytest configuration and fixtures."""

import asyncio
from datetime import datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo

import pytest

from timecapsule.catalog import ReleaseCatalog
from timecapsule.config import AppConfig
from timecapsule.models import Memorial
from timecapsule.notifier import CapsuleNoticePayload, MessagePayload
from timecapsule.repository import (
    DatabaseConnectionManager,
    DeliverableRepository,
    MemorialRepository,
)
from timecapsule.scheduler import ReleaseScheduler


UTC = ZoneInfo("UTC")


class FrozenClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingNotifier:
    """In-memory notifier that records payloads.

    ``results`` is consumed one entry per send: True/False is returned,
    exceptions are raised. When empty, sends succeed.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.messages: list[MessagePayload] = []
        self.notices: list[CapsuleNoticePayload] = []
        self.results: list[Union[bool, Exception]] = []
        self.delay = delay

    @property
    def calls(self) -> int:
        return len(self.messages) + len(self.notices)

    async def _next_result(self) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.results:
            return True
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def send_deferred_message(self, payload: MessagePayload) -> bool:
        self.messages.append(payload)
        return await self._next_result()

    async def send_capsule_release_notice(self, payload: CapsuleNoticePayload) -> bool:
        self.notices.append(payload)
        return await self._next_result()


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


@pytest.fixture
def db_manager(tmp_path):
    """Database manager backed by a temporary SQLite file."""
    manager = DatabaseConnectionManager(tmp_path / "timecapsule-test.db")
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def memorial_repo(db_manager):
    return MemorialRepository(db_manager)


@pytest.fixture
def deliverable_repo(db_manager):
    return DeliverableRepository(db_manager)


@pytest.fixture
def memorial(memorial_repo) -> Memorial:
    return memorial_repo.create(
        Memorial(
            name="Eleanor Vance",
            timezone="America/New_York",
            creator_email="family@example.com",
        )
    )


@pytest.fixture
def catalog(memorial_repo, deliverable_repo) -> ReleaseCatalog:
    return ReleaseCatalog(memorial_repo, deliverable_repo)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(utc(2024, 1, 1))


@pytest.fixture
def app_config() -> AppConfig:
    config = AppConfig()
    config.delivery.max_retries = 1
    config.delivery.initial_backoff_seconds = 0.0
    config.delivery.timeout_seconds = 1.0
    config.scheduler.tick_interval_seconds = 1
    return config


@pytest.fixture
def make_scheduler(deliverable_repo, memorial_repo, notifier, clock, app_config):
    """Build a scheduler wired to the test database and recording notifier."""

    def _make(config: Optional[AppConfig] = None) -> ReleaseScheduler:
        return ReleaseScheduler.from_components(
            deliverables=deliverable_repo,
            memorials=memorial_repo,
            notifier=notifier,
            config=config or app_config,
            clock=clock,
        )

    return _make
