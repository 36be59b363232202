from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from hangout_scheduler.exceptions import AccessUnavailable, CalendarTransportError
from hangout_scheduler.models.domain.calendar_domain import BusyInterval
from hangout_scheduler.repositories.hangout_repository import InMemoryHangoutRepository
from hangout_scheduler.services.availability.engine import AvailabilityEngine
from hangout_scheduler.services.hangouts.lifecycle import HangoutLifecycleService

# Monday 2026-10-19 08:00 UTC
DEFAULT_NOW = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


class FakeCalendarProvider:
    def __init__(self):
        self.busy: dict[str, list[BusyInterval]] = {}
        self.unavailable: set[str] = set()
        self.broken: set[str] = set()
        self.failing_creates: set[str] = set()
        self.failing_deletes: set[str] = set()
        self.busy_calls: list[str] = []
        self.created: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self._next_event = 0

    def add_busy(self, user_id: str, start: datetime, end: datetime) -> None:
        self.busy.setdefault(user_id, []).append(BusyInterval(start=start, end=end))

    async def has_access(self, user_id: str) -> bool:
        return user_id not in self.unavailable

    async def get_busy_intervals(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval]:
        self.busy_calls.append(user_id)
        if user_id in self.unavailable:
            raise AccessUnavailable("no calendar", user_id=user_id)
        if user_id in self.broken:
            raise CalendarTransportError("calendar down", user_id=user_id, status_code=503)
        return [i for i in self.busy.get(user_id, []) if i.overlaps(start, end)]

    async def create_event(
        self,
        user_id: str,
        title: str,
        description: str,
        start: datetime,
        end: datetime,
        location: str | None = None,
    ) -> str:
        if user_id in self.failing_creates:
            raise CalendarTransportError("create failed", user_id=user_id, status_code=500)
        self._next_event += 1
        event_id = f"evt-{user_id}-{self._next_event}"
        self.created.append((user_id, event_id))
        return event_id

    async def delete_event(self, user_id: str, event_id: str) -> None:
        if user_id in self.failing_deletes:
            raise CalendarTransportError("delete failed", user_id=user_id, status_code=500)
        self.deleted.append((user_id, event_id))


class FakeDispatcher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, user_id, kind, payload) -> None:
        if self.fail:
            raise RuntimeError("push service down")
        self.sent.append((user_id, kind.value, payload))


class FakeClock:
    def __init__(self, now: datetime = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def calendar():
    return FakeCalendarProvider()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def repository():
    return InMemoryHangoutRepository()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(calendar):
    return AvailabilityEngine(
        calendar, tz=ZoneInfo("UTC"), day_start_hour=9, day_end_hour=21, step_minutes=30
    )


@pytest.fixture
def service(repository, calendar, engine, dispatcher, clock):
    return HangoutLifecycleService(repository, calendar, engine, dispatcher, clock=clock)


@pytest.fixture
def failing_dispatcher():
    return FakeDispatcher(fail=True)
