from datetime import datetime, timedelta, timezone

import pytest

from shift_alarms.notifications import LocalNotificationService
from shift_alarms.scheduler import AlarmScheduler
from shift_alarms.storage import AlarmStore, MemoryKeyValueStore, StoredShiftLookup

# 2025-01-06 is a Monday.
MONDAY = datetime(2025, 1, 6, 7, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(MONDAY)


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def notifications(clock):
    return LocalNotificationService(clock=clock)


@pytest.fixture
def scheduler(kv, notifications, clock):
    counter = iter(range(1, 1000))
    return AlarmScheduler(
        store=AlarmStore(kv),
        notifications=notifications,
        shift_lookup=StoredShiftLookup(kv),
        clock=clock,
        id_factory=lambda: f"al_{next(counter):04d}",
        timezone=timezone.utc,
    )
