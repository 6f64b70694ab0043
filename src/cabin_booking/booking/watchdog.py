"""
Сторожевой процесс, завершающий истекшие сессии.
"""

import asyncio
import contextlib
from datetime import datetime
from typing import Callable, List, Optional, Set

from ..shared_kernel import Actor, BookingStatus, EntityId, WriteError, now
from . import interfaces as ports
from .application import LifecycleManager
from .domain import Booking, BookingSnapshot, Countdown, countdown
from .infrastructure import BookingSyncAdapter, StdlibLogger


class ExpiryWatchdog:
    """
    Периодически ищет одобренные сессии с истекшим окном и завершает их.

    Для каждого бронирования запускается ровно одна запись Complete:
    id запоминается до тех пор, пока снимок не покажет, что бронирование
    больше не в статусе Approved. Неудачная запись снимает отметку,
    и следующий тик попробует снова.
    """

    def __init__(
        self,
        sync: BookingSyncAdapter,
        lifecycle: LifecycleManager,
        clock: Callable[[], datetime] = now,
        interval_seconds: float = 1.0,
        critical_threshold_minutes: int = 10,
        logger: Optional[ports.ILogger] = None,
        actor: Optional[Actor] = None,
    ):
        self._sync = sync
        self._lifecycle = lifecycle
        self._clock = clock
        self._interval = interval_seconds
        self._critical_threshold = critical_threshold_minutes
        self._logger = logger or StdlibLogger("cabin_booking.watchdog")
        self._actor = actor or Actor.system("watchdog")
        self._scheduled: Set[EntityId] = set()
        self._writes: Set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = sync.subscribe(self._on_snapshot)

    @property
    def scheduled(self) -> Set[EntityId]:
        """Бронирования, для которых завершение уже запущено."""
        return set(self._scheduled)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _on_snapshot(self, snapshot: BookingSnapshot) -> None:
        for booking_id in list(self._scheduled):
            booking = snapshot.get(booking_id)
            if booking is None or booking.status != BookingStatus.APPROVED:
                self._scheduled.discard(booking_id)

    def tick(self) -> List[EntityId]:
        """Один проход по снимку; возвращает id, для которых запущено завершение."""
        at = self._clock()
        started = []
        for booking in self._sync.snapshot:
            if booking.id in self._scheduled or not booking.is_expired(at):
                continue
            self._scheduled.add(booking.id)
            task = asyncio.get_running_loop().create_task(self._complete(booking))
            self._writes.add(task)
            task.add_done_callback(self._writes.discard)
            started.append(booking.id)
        return started

    async def _complete(self, booking: Booking) -> None:
        outcome = await self._lifecycle.complete(booking.id, self._actor)
        if outcome:
            self._logger.info(
                "Expired session completed",
                booking_id=booking.id,
                cabin_id=booking.cabin_id,
                end_time=booking.end_time.isoformat(),
            )
            return

        self._logger.warning(
            "Could not complete expired session",
            booking_id=booking.id,
            error=str(outcome.error),
        )
        if isinstance(outcome.error, WriteError):
            self._scheduled.discard(booking.id)

    async def drain(self) -> None:
        """Дожидается всех запущенных записей."""
        if self._writes:
            await asyncio.gather(*list(self._writes))

    async def run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        """Запускает периодический таймер в текущем event loop."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self.run())
            self._logger.info("Expiry watchdog started", interval=self._interval)

    async def stop(self) -> None:
        """Останавливает таймер; уже отправленные записи доводятся до конца."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            self._logger.info("Expiry watchdog stopped")
        await self.drain()

    def close(self) -> None:
        self._unsubscribe()

    def countdown(self, booking: Booking) -> Optional[Countdown]:
        """Обратный отсчет для отображения; тот же расчет, что и у триггера истечения."""
        return countdown(booking, self._clock(), self._critical_threshold)
