"""
Общие фикстуры для тестов.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from cabin_booking.booking.application import (
    AdminActionDispatcher,
    BookingApplicationService,
    LifecycleManager,
)
from cabin_booking.booking.domain import Booking, Cabin
from cabin_booking.booking.infrastructure import (
    BookingSyncAdapter,
    InMemoryEventBus,
    InMemoryRecordStore,
)
from cabin_booking.booking.watchdog import ExpiryWatchdog
from cabin_booking.settings import Settings, build_cabin_catalog
from cabin_booking.shared_kernel import Actor, BookingStatus

T0 = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Управляемые часы для тестов."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


async def flush() -> None:
    """Дает event loop доставить запланированные снимки."""
    for _ in range(3):
        await asyncio.sleep(0)


def make_booking(
    booking_id: str = "b1",
    cabin_id: str = "C1",
    requester_id: str = "user-1",
    members: Optional[List[str]] = None,
    status: BookingStatus = BookingStatus.PENDING,
    timestamp: datetime = T0,
    duration_hours: int = 2,
    approved_by: Optional[str] = None,
    completion_time: Optional[datetime] = None,
) -> Booking:
    members = members or ["Alice", "Bob", "Carol", "Dave"]
    return Booking(
        id=booking_id,
        cabin_id=cabin_id,
        capacity=len(members),
        requester_name=members[0],
        requester_id=requester_id,
        group_members=tuple(members),
        timestamp=timestamp,
        duration_hours=duration_hours,
        status=status,
        approved_by=approved_by,
        completion_time=completion_time,
    )


def raw_record(booking: Booking) -> Dict[str, Any]:
    """Запись в формате хранилища (как ее положил бы другой клиент)."""
    return booking.to_record()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cabin() -> Cabin:
    return Cabin(id="C1", name="Cabin 1", capacity=4)


@pytest.fixture
def catalog() -> List[Cabin]:
    return build_cabin_catalog(Settings())


@pytest.fixture
def requester() -> Actor:
    return Actor.requester("user-1", "Alice")


@pytest.fixture
def other_requester() -> Actor:
    return Actor.requester("user-2", "Erin")


@pytest.fixture
def admin() -> Actor:
    return Actor.admin("admin-session-42")


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def sync(store: InMemoryRecordStore, clock: FakeClock) -> BookingSyncAdapter:
    adapter = BookingSyncAdapter(store, clock=clock)
    adapter.connect()
    return adapter


@pytest.fixture
def lifecycle(
    sync: BookingSyncAdapter, event_bus: InMemoryEventBus, clock: FakeClock
) -> LifecycleManager:
    return LifecycleManager(sync, event_bus=event_bus, clock=clock)


@pytest.fixture
def service(
    sync: BookingSyncAdapter,
    lifecycle: LifecycleManager,
    catalog: List[Cabin],
    event_bus: InMemoryEventBus,
    clock: FakeClock,
) -> BookingApplicationService:
    return BookingApplicationService(
        sync, lifecycle, catalog, duration_hours=2, event_bus=event_bus, clock=clock
    )


@pytest.fixture
def dispatcher(lifecycle: LifecycleManager) -> AdminActionDispatcher:
    return AdminActionDispatcher(lifecycle)


@pytest.fixture
def watchdog(
    sync: BookingSyncAdapter, lifecycle: LifecycleManager, clock: FakeClock
) -> ExpiryWatchdog:
    return ExpiryWatchdog(sync, lifecycle, clock=clock, interval_seconds=0.01)
