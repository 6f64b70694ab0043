"""
Доменная модель контекста бронирования.

Содержит кабинки, агрегат бронирования с его машиной состояний,
расчет занятости кабинок (Availability Engine) и проверку конфликтов
новой заявки (Conflict Guard).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..shared_kernel import (
    Actor,
    ActorRole,
    BookingStatus,
    ConflictError,
    DomainEvent,
    DomainException,
    EntityId,
    InvalidTransition,
    Outcome,
    ValidationError,
    normalize_instant,
)


class Cabin(BaseModel):
    """Кабинка из статического каталога."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    capacity: int = Field(..., gt=0)


class BookingRequested(DomainEvent):
    """Событие: подана заявка на бронирование."""

    booking_id: EntityId
    cabin_id: str
    requester_id: str


class BookingApproved(DomainEvent):
    """Событие: заявка одобрена, сессия началась."""

    booking_id: EntityId
    cabin_id: str
    approved_by: str
    session_start: datetime


class BookingRejected(DomainEvent):
    """Событие: заявка отклонена."""

    booking_id: EntityId
    rejected_by: str


class BookingCompleted(DomainEvent):
    """Событие: сессия завершена."""

    booking_id: EntityId
    cabin_id: str
    completed_by: str
    completion_time: datetime


class BookingCancelled(DomainEvent):
    """Событие: владелец отменил бронирование (запись удалена)."""

    booking_id: EntityId
    cancelled_by: str
    previous_status: BookingStatus


class Booking(BaseModel):
    """
    Бронирование кабинки группой на фиксированное время.

    Значение неизменяемо: каждый переход возвращает новый экземпляр,
    а снимок данных никогда не меняется на месте.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: EntityId = ""  # Пустой id - запись еще не сохранена
    cabin_id: str
    capacity: int = Field(..., gt=0)
    requester_name: str
    requester_id: str
    group_members: Tuple[str, ...]
    # Пока заявка ждет - время подачи, после одобрения - начало сессии
    timestamp: datetime
    duration_hours: int = Field(..., gt=0)
    status: BookingStatus = BookingStatus.PENDING
    approved_by: Optional[str] = None
    completion_time: Optional[datetime] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, v: Any) -> datetime:
        if v is None:
            raise ValueError("timestamp обязателен")
        return normalize_instant(v)

    @field_validator("completion_time", mode="before")
    @classmethod
    def _normalize_completion_time(cls, v: Any) -> Optional[datetime]:
        if v is None:
            return None
        return normalize_instant(v)

    @model_validator(mode="after")
    def _members_match_capacity(self) -> "Booking":
        if len(self.group_members) != self.capacity:
            raise ValueError(
                f"Число участников ({len(self.group_members)}) "
                f"не совпадает с вместимостью ({self.capacity})"
            )
        return self

    @classmethod
    def request(
        cls,
        cabin: Cabin,
        requester_id: str,
        members: Sequence[str],
        at: datetime,
        duration_hours: int,
    ) -> "Booking":
        """Создает новую заявку в статусе Pending (еще без id)."""
        return cls(
            cabin_id=cabin.id,
            capacity=cabin.capacity,
            requester_name=members[0],
            requester_id=requester_id,
            group_members=tuple(members),
            timestamp=at,
            duration_hours=duration_hours,
        )

    @property
    def host(self) -> str:
        return self.group_members[0]

    @property
    def end_time(self) -> datetime:
        """Момент окончания сессии."""
        return self.timestamp + timedelta(hours=self.duration_hours)

    def remaining(self, at: datetime) -> timedelta:
        """Оставшееся время сессии (отрицательное после истечения)."""
        return self.end_time - at

    def is_active(self, at: datetime) -> bool:
        """Одобрено, не завершено и окно сессии еще не истекло."""
        return (
            self.status == BookingStatus.APPROVED
            and self.completion_time is None
            and self.end_time > at
        )

    def is_expired(self, at: datetime) -> bool:
        """Одобрено, не завершено, но окно сессии уже истекло."""
        return (
            self.status == BookingStatus.APPROVED
            and self.completion_time is None
            and at >= self.end_time
        )

    def belongs_to(self, actor: Actor) -> bool:
        return self.requester_id == actor.id

    def approve(self, actor: Actor, at: datetime) -> "Booking":
        """Одобряет заявку и перезапускает часы сессии."""
        if actor.role != ActorRole.ADMIN:
            raise InvalidTransition("Одобрить заявку может только администратор")
        if self.status != BookingStatus.PENDING:
            raise InvalidTransition(
                f"Невозможно одобрить бронирование в статусе {self.status.value}"
            )
        return self.model_copy(
            update={
                "status": BookingStatus.APPROVED,
                "approved_by": actor.display_name,
                "timestamp": max(at, self.timestamp),
                "completion_time": None,
            }
        )

    def reject(self, actor: Actor) -> "Booking":
        """Отклоняет заявку; запись сохраняется."""
        if actor.role != ActorRole.ADMIN:
            raise InvalidTransition("Отклонить заявку может только администратор")
        if self.status != BookingStatus.PENDING:
            raise InvalidTransition(
                f"Невозможно отклонить бронирование в статусе {self.status.value}"
            )
        return self.model_copy(update={"status": BookingStatus.REJECTED})

    def complete(self, actor: Actor, at: datetime) -> "Booking":
        """Завершает сессию: выезд владельца, решение админа или истечение."""
        if actor.role == ActorRole.REQUESTER and not self.belongs_to(actor):
            raise InvalidTransition("Завершить можно только собственное бронирование")
        if self.status != BookingStatus.APPROVED or self.completion_time is not None:
            raise InvalidTransition(
                f"Невозможно завершить бронирование в статусе {self.status.value}"
            )
        return self.model_copy(
            update={
                "status": BookingStatus.COMPLETED,
                "completion_time": max(at, self.timestamp),
            }
        )

    def ensure_cancellable(self, actor: Actor, at: datetime) -> None:
        """Проверяет, что владелец может отменить (удалить) бронирование."""
        if not self.belongs_to(actor):
            raise InvalidTransition("Отменить можно только собственное бронирование")
        if self.status == BookingStatus.PENDING or self.is_active(at):
            return
        raise InvalidTransition(
            f"Невозможно отменить бронирование в статусе {self.status.value}"
        )

    def to_record(self, include: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Поля записи для хранилища (camelCase, без id)."""
        data = self.model_dump(
            by_alias=True,
            include=set(include) if include is not None else None,
            exclude={"id"},
        )
        if "status" in data:
            data["status"] = self.status.value
        if "groupMembers" in data:
            data["groupMembers"] = list(self.group_members)
        return data


# Поля, которые меняет каждый переход (в терминах атрибутов Booking)
TRANSITION_FIELDS: Dict[BookingStatus, Tuple[str, ...]] = {
    BookingStatus.APPROVED: ("status", "approved_by", "timestamp", "completion_time"),
    BookingStatus.REJECTED: ("status",),
    BookingStatus.COMPLETED: ("status", "completion_time"),
}


# Availability Engine


class CabinState(str, Enum):
    """Состояние занятости кабинки."""

    AVAILABLE = "Available"
    PENDING_APPROVAL = "Pending Approval"
    OCCUPIED = "Occupied"


class CabinStatus(BaseModel):
    """Текущее состояние кабинки, выведенное из набора бронирований."""

    model_config = ConfigDict(frozen=True)

    state: CabinState
    host_name: Optional[str] = None
    end_time: Optional[datetime] = None
    booking_id: Optional[EntityId] = None

    @property
    def is_available(self) -> bool:
        return self.state == CabinState.AVAILABLE


def _earliest(bookings: Iterable[Booking]) -> Optional[Booking]:
    # При нарушении инварианта выбор детерминирован: раньше timestamp, затем id
    return min(bookings, key=lambda b: (b.timestamp, b.id), default=None)


def resource_status(
    cabin_id: str, bookings: Iterable[Booking], at: datetime
) -> CabinStatus:
    """Состояние кабинки: Occupied, затем Pending Approval, иначе Available."""
    for_cabin = [b for b in bookings if b.cabin_id == cabin_id]

    active = _earliest(b for b in for_cabin if b.is_active(at))
    if active is not None:
        return CabinStatus(
            state=CabinState.OCCUPIED,
            host_name=active.requester_name,
            end_time=active.end_time,
            booking_id=active.id,
        )

    pending = _earliest(b for b in for_cabin if b.status == BookingStatus.PENDING)
    if pending is not None:
        return CabinStatus(
            state=CabinState.PENDING_APPROVAL,
            host_name=pending.requester_name,
            booking_id=pending.id,
        )

    return CabinStatus(state=CabinState.AVAILABLE)


def my_booking(
    requester_id: str, bookings: Iterable[Booking], at: datetime
) -> Optional[Booking]:
    """Активное одобренное бронирование пользователя, иначе его заявка, иначе None."""
    own = [b for b in bookings if b.requester_id == requester_id]
    active = _earliest(b for b in own if b.is_active(at))
    if active is not None:
        return active
    return _earliest(b for b in own if b.status == BookingStatus.PENDING)


# Conflict Guard


class BookingPolicy:
    """Политики и бизнес-правила для заявок."""

    @classmethod
    def validate_members(cls, members: Sequence[str], capacity: int) -> List[str]:
        """Проверяет состав группы и возвращает имена без пробелов по краям."""
        if len(members) != capacity:
            raise ValidationError(
                f"Нужно указать ровно {capacity} участников, передано {len(members)}"
            )
        cleaned = [(name or "").strip() for name in members]
        if not all(cleaned):
            raise ValidationError("Имена участников не могут быть пустыми")
        return cleaned


def validate_request(
    cabin_id: str,
    requester_id: str,
    members: Sequence[str],
    cabin_capacity: int,
    bookings: Sequence[Booking],
    at: datetime,
) -> Outcome[List[str]]:
    """
    Проверяет новую заявку по последнему локальному снимку.

    Порядок проверок: состав группы, отсутствие у пользователя другой
    заявки или активной сессии, свободность кабинки. Проверка
    рекомендательная: успешный результат не гарантирует, что запись не
    столкнется с записью другого клиента.
    """
    try:
        cleaned = BookingPolicy.validate_members(members, cabin_capacity)
    except DomainException as e:
        return Outcome.failure(e)

    if my_booking(requester_id, bookings, at) is not None:
        return Outcome.failure(ConflictError(ConflictError.ALREADY_HAS_BOOKING))

    if not resource_status(cabin_id, bookings, at).is_available:
        return Outcome.failure(ConflictError(ConflictError.CABIN_UNAVAILABLE))

    return Outcome.success(cleaned)


# Обратный отсчет


class Countdown(BaseModel):
    """Оставшееся время сессии для отображения."""

    model_config = ConfigDict(frozen=True)

    remaining: timedelta
    display: str
    is_critical: bool
    is_expired: bool


def countdown(
    booking: Booking, at: datetime, critical_threshold_minutes: int = 10
) -> Optional[Countdown]:
    """Обратный отсчет для одобренной незавершенной сессии, иначе None."""
    if booking.status != BookingStatus.APPROVED or booking.completion_time is not None:
        return None

    remaining = booking.remaining(at)
    if remaining <= timedelta(0):
        return Countdown(
            remaining=timedelta(0), display="EXPIRED", is_critical=False, is_expired=True
        )

    total_seconds = int(remaining.total_seconds())
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return Countdown(
        remaining=remaining,
        display=f"{hours:02d}:{minutes:02d}:{seconds:02d}",
        is_critical=total_seconds // 60 <= critical_threshold_minutes,
        is_expired=False,
    )


@dataclass(frozen=True)
class BookingSnapshot:
    """Полный набор бронирований из одного push-события хранилища."""

    bookings: Tuple[Booking, ...] = ()
    received_at: Optional[datetime] = None

    def __iter__(self) -> Iterator[Booking]:
        return iter(self.bookings)

    def __len__(self) -> int:
        return len(self.bookings)

    def get(self, booking_id: EntityId) -> Optional[Booking]:
        for booking in self.bookings:
            if booking.id == booking_id:
                return booking
        return None
