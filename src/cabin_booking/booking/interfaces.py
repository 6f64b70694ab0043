"""
Интерфейсы (порты) для контекста бронирования.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Protocol, Type, TypeVar

from ..shared_kernel import DomainEvent, EntityId

T_Event = TypeVar("T_Event", bound=DomainEvent)

# Сырая запись хранилища: поля в camelCase плюс "id"
RawRecord = Dict[str, Any]
SnapshotCallback = Callable[[List[RawRecord]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class ILogger(Protocol):
    """Интерфейс для логгера."""

    def info(self, message: str, **kwargs: Any) -> None: ...
    def error(self, message: str, **kwargs: Any) -> None: ...
    def warning(self, message: str, **kwargs: Any) -> None: ...
    def debug(self, message: str, **kwargs: Any) -> None: ...


class IEventBus(Protocol):
    """Интерфейс для шины событий."""

    def publish(self, event: DomainEvent) -> None: ...
    def subscribe(
        self, event_type: Type[T_Event], handler: Callable[[T_Event], None]
    ) -> Unsubscribe: ...


class IRecordStore(Protocol):
    """
    Контракт внешнего realtime-хранилища.

    Подписка доставляет полный набор записей при каждом изменении.
    Операции записи асинхронные; ошибки выбрасываются как исключения.
    """

    def subscribe(
        self, on_snapshot: SnapshotCallback, on_error: ErrorCallback
    ) -> Unsubscribe: ...
    async def create(self, fields: Dict[str, Any]) -> EntityId: ...
    async def update(self, record_id: EntityId, fields: Dict[str, Any]) -> None: ...
    async def delete(self, record_id: EntityId) -> None: ...
