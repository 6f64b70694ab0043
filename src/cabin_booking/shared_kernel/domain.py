"""
Основные доменные типы и утилиты общего ядра.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

# Идентификаторы записей выдает хранилище, поэтому это просто строки
EntityId = str

T = TypeVar("T")


def generate_id() -> str:
    """Генерирует новый идентификатор записи."""
    return uuid4().hex


# Общие перечисления
class BookingStatus(str, Enum):
    """Статусы бронирования (значения совпадают с форматом хранилища)."""

    PENDING = "Pending"  # Ожидает решения администратора
    APPROVED = "Approved"  # Одобрено, сессия идет
    REJECTED = "Rejected"  # Отклонено
    COMPLETED = "Completed"  # Сессия завершена


class ActorRole(str, Enum):
    """Роли участников, инициирующих переходы."""

    REQUESTER = "requester"
    ADMIN = "admin"
    SYSTEM = "system"


def admin_display_name(session_id: str) -> str:
    """Отображаемое имя администратора по идентификатору сессии."""
    return f"Admin ({session_id[:4]})"


class Actor(BaseModel):
    """Участник, от имени которого выполняется действие."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    role: ActorRole = ActorRole.REQUESTER

    @classmethod
    def requester(cls, session_id: str, display_name: Optional[str] = None) -> "Actor":
        return cls(id=session_id, display_name=display_name or session_id)

    @classmethod
    def admin(cls, session_id: str, resolve_name=admin_display_name) -> "Actor":
        return cls(id=session_id, display_name=resolve_name(session_id), role=ActorRole.ADMIN)

    @classmethod
    def system(cls, name: str = "watchdog") -> "Actor":
        return cls(id=name, display_name=name, role=ActorRole.SYSTEM)


class DomainEvent(BaseModel):
    """Базовый класс для всех доменных событий."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    occurred_on: datetime = Field(default_factory=lambda: now())


# Общие исключения
class DomainException(Exception):
    """Базовое исключение для доменных ошибок."""

    pass


class ValidationError(DomainException):
    """Некорректный запрос: неверное число участников, пустые имена."""

    pass


class ConflictError(DomainException):
    """Запрос конфликтует с текущим снимком данных."""

    ALREADY_HAS_BOOKING = "already has a booking"
    CABIN_UNAVAILABLE = "cabin unavailable"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidTransition(DomainException):
    """Не выполнено предусловие перехода статуса."""

    pass


class WriteError(DomainException):
    """Хранилище отклонило запись или запись не удалась."""

    pass


class SyncError(DomainException):
    """Сбой подписки на хранилище."""

    pass


class NothingToExport(DomainException):
    """Нет данных для выгрузки."""

    pass


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Явный результат операции: успех со значением или одна ошибка."""

    ok: bool
    value: Optional[T] = None
    error: Optional[DomainException] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: DomainException) -> "Outcome[T]":
        return cls(ok=False, error=error)

    def __bool__(self) -> bool:
        return self.ok


# Общие утилиты
def now() -> datetime:
    """Возвращает текущий момент времени (UTC)."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Приводит datetime к UTC; наивные значения считаются UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_instant(value: Any) -> datetime:
    """
    Приводит значение времени из хранилища к datetime в UTC.

    Поддерживаются: собственный тип времени хранилища (объект с методом
    ``to_datetime()``), ``datetime``, число (миллисекунды эпохи) и строка
    ISO-8601. Для всего остального выбрасывается ``ValueError``.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if hasattr(value, "to_datetime") and callable(value.to_datetime):
        try:
            converted = value.to_datetime()
        except Exception as e:
            raise ValueError(f"Не удалось преобразовать время хранилища: {value!r}") from e
        if not isinstance(converted, datetime):
            raise ValueError(f"to_datetime() вернул не datetime: {converted!r}")
        return to_utc(converted)
    if isinstance(value, bool):
        raise ValueError(f"Некорректное значение времени: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"Некорректное значение времени: {value!r}")
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Время вне допустимого диапазона: {value!r}") from e
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise ValueError(f"Неподдерживаемый тип времени: {type(value).__name__}")


def isoformat_ms(value: Optional[datetime]) -> str:
    """Формат ISO-8601 с миллисекундами и суффиксом Z; пустая строка для None."""
    if value is None:
        return ""
    value = to_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
