"""
Прикладной слой контекста бронирования.

Содержит сервисы приложения, которые координируют взаимодействие
между действиями пользователей/администраторов, доменной моделью
и адаптером синхронизации с хранилищем.
"""

from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from ..shared_kernel import (
    Actor,
    ActorRole,
    BookingStatus,
    ConflictError,
    DomainEvent,
    EntityId,
    InvalidTransition,
    Outcome,
    ValidationError,
    now,
)
from . import interfaces as ports
from .domain import (
    TRANSITION_FIELDS,
    Booking,
    BookingApproved,
    BookingCancelled,
    BookingCompleted,
    BookingRejected,
    BookingRequested,
    BookingSnapshot,
    Cabin,
    CabinStatus,
    my_booking,
    resource_status,
    validate_request,
)
from .infrastructure import BookingSyncAdapter, StdlibLogger

# DTO для входящих данных


class CreateBookingRequest(BaseModel):
    """Запрос на бронирование кабинки."""

    cabin_id: str
    members: List[str]  # Первый участник - организатор


class AdminIntent(str, Enum):
    """Намерения администратора."""

    APPROVE = "approve"
    REJECT = "reject"
    FORCE_COMPLETE = "force_complete"


class AdminCommand(BaseModel):
    """Команда администратора над бронированием."""

    intent: AdminIntent
    booking_id: EntityId


# Сервисы приложения


class LifecycleManager:
    """
    Машина состояний бронирования.

    Проверяет переход по последнему снимку, пишет изменения в хранилище
    и публикует доменное событие. Пока собственная запись по бронированию
    не отразилась в снимке, любой следующий переход по нему отклоняется
    без записи: снимок в этот момент еще показывает прежний статус.
    """

    def __init__(
        self,
        sync: BookingSyncAdapter,
        event_bus: Optional[ports.IEventBus] = None,
        logger: Optional[ports.ILogger] = None,
        clock: Callable[[], datetime] = now,
    ):
        self._sync = sync
        self._event_bus = event_bus
        self._logger = logger or StdlibLogger("cabin_booking.lifecycle")
        self._clock = clock
        # id бронирования -> статус, из которого ушла еще не подтвержденная запись
        self._pending: Dict[EntityId, BookingStatus] = {}
        self._unsubscribe = sync.subscribe(self._on_snapshot)

    def _on_snapshot(self, snapshot: BookingSnapshot) -> None:
        for booking_id, previous in list(self._pending.items()):
            booking = snapshot.get(booking_id)
            if booking is None or booking.status != previous:
                del self._pending[booking_id]

    def close(self) -> None:
        self._unsubscribe()

    def is_pending(self, booking_id: EntityId) -> bool:
        """Есть ли по бронированию запись, еще не отраженная в снимке."""
        return booking_id in self._pending

    async def approve(self, booking_id: EntityId, actor: Actor) -> Outcome[Booking]:
        """Pending → Approved; часы сессии стартуют заново."""
        return await self._apply(
            booking_id,
            lambda booking, at: booking.approve(actor, at),
            lambda updated: BookingApproved(
                booking_id=updated.id,
                cabin_id=updated.cabin_id,
                approved_by=actor.display_name,
                session_start=updated.timestamp,
            ),
        )

    async def reject(self, booking_id: EntityId, actor: Actor) -> Outcome[Booking]:
        """Pending → Rejected."""
        return await self._apply(
            booking_id,
            lambda booking, at: booking.reject(actor),
            lambda updated: BookingRejected(
                booking_id=updated.id, rejected_by=actor.display_name
            ),
        )

    async def complete(self, booking_id: EntityId, actor: Actor) -> Outcome[Booking]:
        """Approved → Completed (выезд, решение администратора или истечение)."""
        return await self._apply(
            booking_id,
            lambda booking, at: booking.complete(actor, at),
            lambda updated: BookingCompleted(
                booking_id=updated.id,
                cabin_id=updated.cabin_id,
                completed_by=actor.display_name,
                completion_time=updated.completion_time,
            ),
        )

    async def cancel(self, booking_id: EntityId, actor: Actor) -> Outcome[Booking]:
        """Отмена владельцем: запись удаляется, а не переводится в конечный статус."""
        found = self._current(booking_id)
        if not found:
            return found
        booking = found.value
        try:
            booking.ensure_cancellable(actor, self._clock())
        except InvalidTransition as e:
            return self._rejected(booking_id, e)

        self._pending[booking_id] = booking.status
        result = await self._sync.delete(booking_id)
        if not result:
            self._pending.pop(booking_id, None)
            return Outcome.failure(result.error)

        self._logger.info("Booking cancelled", booking_id=booking_id, actor=actor.id)
        self._publish(
            BookingCancelled(
                booking_id=booking_id,
                cancelled_by=actor.display_name,
                previous_status=booking.status,
            )
        )
        return Outcome.success(booking)

    def _current(self, booking_id: EntityId) -> Outcome[Booking]:
        if booking_id in self._pending:
            return self._rejected(
                booking_id,
                InvalidTransition(
                    f"Предыдущее изменение бронирования {booking_id} еще не отражено в снимке"
                ),
            )
        booking = self._sync.snapshot.get(booking_id)
        if booking is None:
            return self._rejected(booking_id, InvalidTransition(f"Бронирование {booking_id} не найдено"))
        return Outcome.success(booking)

    async def _apply(
        self,
        booking_id: EntityId,
        change: Callable[[Booking, datetime], Booking],
        make_event: Callable[[Booking], DomainEvent],
    ) -> Outcome[Booking]:
        found = self._current(booking_id)
        if not found:
            return found
        booking = found.value

        try:
            updated = change(booking, self._clock())
        except InvalidTransition as e:
            return self._rejected(booking_id, e)

        self._pending[booking_id] = booking.status
        fields = updated.to_record(include=TRANSITION_FIELDS[updated.status])
        result = await self._sync.update(booking_id, fields)
        if not result:
            self._pending.pop(booking_id, None)
            return Outcome.failure(result.error)

        self._logger.info(
            "Booking status changed",
            booking_id=booking_id,
            from_status=booking.status.value,
            to_status=updated.status.value,
        )
        self._publish(make_event(updated))
        return Outcome.success(updated)

    def _rejected(self, booking_id: EntityId, error: InvalidTransition) -> Outcome[Booking]:
        self._logger.info("Transition rejected", booking_id=booking_id, reason=str(error))
        return Outcome.failure(error)

    def _publish(self, event: DomainEvent) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)


class BookingApplicationService:
    """Сервис приложения для пользователей: заявки, отмена, выезд и представления."""

    def __init__(
        self,
        sync: BookingSyncAdapter,
        lifecycle: LifecycleManager,
        catalog: Sequence[Cabin],
        duration_hours: int,
        event_bus: Optional[ports.IEventBus] = None,
        logger: Optional[ports.ILogger] = None,
        clock: Callable[[], datetime] = now,
    ):
        self._sync = sync
        self._lifecycle = lifecycle
        self._catalog = tuple(catalog)
        self._duration_hours = duration_hours
        self._event_bus = event_bus
        self._logger = logger or StdlibLogger("cabin_booking.service")
        self._clock = clock
        self._submitting: Set[str] = set()
        self._unsubscribe = sync.subscribe(self._on_snapshot)

    def _on_snapshot(self, snapshot: BookingSnapshot) -> None:
        at = self._clock()
        for requester_id in list(self._submitting):
            if my_booking(requester_id, snapshot.bookings, at) is not None:
                self._submitting.discard(requester_id)

    def close(self) -> None:
        self._unsubscribe()

    @property
    def catalog(self) -> Tuple[Cabin, ...]:
        return self._catalog

    def get_cabin(self, cabin_id: str) -> Optional[Cabin]:
        for cabin in self._catalog:
            if cabin.id == cabin_id:
                return cabin
        return None

    async def submit_request(
        self, request: CreateBookingRequest, actor: Actor
    ) -> Outcome[EntityId]:
        """Проверяет заявку по текущему снимку и записывает ее в статусе Pending."""
        cabin = self.get_cabin(request.cabin_id)
        if cabin is None:
            return Outcome.failure(ValidationError(f"Кабинка {request.cabin_id} не существует"))

        # Пока снимок не показал предыдущую заявку пользователя, проверка по снимку ее не увидит
        if actor.id in self._submitting:
            return Outcome.failure(ConflictError(ConflictError.ALREADY_HAS_BOOKING))

        at = self._clock()
        check = validate_request(
            cabin.id,
            actor.id,
            request.members,
            cabin.capacity,
            self._sync.snapshot.bookings,
            at,
        )
        if not check:
            self._logger.info(
                "Booking request rejected",
                cabin_id=cabin.id,
                requester_id=actor.id,
                reason=str(check.error),
            )
            return Outcome.failure(check.error)

        booking = Booking.request(cabin, actor.id, check.value, at, self._duration_hours)
        # Отметка снимается, когда снимок покажет заявку, или при ошибке записи
        self._submitting.add(actor.id)
        result = await self._sync.create(booking.to_record())
        if not result:
            self._submitting.discard(actor.id)
            return result

        self._logger.info("Booking requested", booking_id=result.value, cabin_id=cabin.id)
        if self._event_bus is not None:
            self._event_bus.publish(
                BookingRequested(
                    booking_id=result.value, cabin_id=cabin.id, requester_id=actor.id
                )
            )
        return result

    def my_booking(self, requester_id: str) -> Optional[Booking]:
        return my_booking(requester_id, self._sync.snapshot.bookings, self._clock())

    def cabin_status(self, cabin_id: str) -> CabinStatus:
        return resource_status(cabin_id, self._sync.snapshot.bookings, self._clock())

    def cabin_board(self, capacity: Optional[int] = None) -> List[Tuple[Cabin, CabinStatus]]:
        """Кабинки в порядке каталога с их состоянием, при необходимости по вместимости."""
        bookings = self._sync.snapshot.bookings
        at = self._clock()
        return [
            (cabin, resource_status(cabin.id, bookings, at))
            for cabin in self._catalog
            if capacity is None or cabin.capacity == capacity
        ]

    def admin_queue(self) -> List[Booking]:
        """Заявки и сессии для администратора: сначала Pending, затем по времени."""
        queue = [
            b
            for b in self._sync.snapshot.bookings
            if b.status in (BookingStatus.PENDING, BookingStatus.APPROVED)
        ]
        return sorted(
            queue,
            key=lambda b: (b.status != BookingStatus.PENDING, b.timestamp, b.id),
        )

    async def cancel_my_booking(self, actor: Actor) -> Outcome[Booking]:
        """Отменяет текущую заявку или активную сессию пользователя."""
        booking = self.my_booking(actor.id)
        if booking is None:
            return Outcome.failure(InvalidTransition("Нет бронирования для отмены"))
        return await self._lifecycle.cancel(booking.id, actor)

    async def check_out(self, actor: Actor) -> Outcome[Booking]:
        """Досрочно завершает активную сессию пользователя."""
        booking = self.my_booking(actor.id)
        if booking is None or booking.status != BookingStatus.APPROVED:
            return Outcome.failure(InvalidTransition("Нет активной сессии для завершения"))
        return await self._lifecycle.complete(booking.id, actor)


class AdminActionDispatcher:
    """Точка входа для действий администратора поверх LifecycleManager."""

    def __init__(self, lifecycle: LifecycleManager, logger: Optional[ports.ILogger] = None):
        self._lifecycle = lifecycle
        self._logger = logger or StdlibLogger("cabin_booking.admin")
        self._handlers = {
            AdminIntent.APPROVE: lifecycle.approve,
            AdminIntent.REJECT: lifecycle.reject,
            AdminIntent.FORCE_COMPLETE: lifecycle.complete,
        }

    async def dispatch(self, command: AdminCommand, actor: Actor) -> Outcome[Booking]:
        if actor.role != ActorRole.ADMIN:
            return Outcome.failure(
                InvalidTransition("Действие доступно только администратору")
            )

        outcome = await self._handlers[command.intent](command.booking_id, actor)
        if not outcome:
            self._logger.warning(
                "Admin action failed",
                intent=command.intent.value,
                booking_id=command.booking_id,
                error=str(outcome.error),
            )
        return outcome
