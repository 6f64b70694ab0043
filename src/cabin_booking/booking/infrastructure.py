"""
Инфраструктурный слой контекста бронирования.

Содержит адаптер синхронизации с realtime-хранилищем, реализацию
хранилища в памяти, логгер и шину событий.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import ValidationError as PydanticValidationError

from ..shared_kernel import (
    DomainEvent,
    EntityId,
    Outcome,
    SyncError,
    WriteError,
    generate_id,
    now,
    to_utc,
)
from . import interfaces as ports
from .domain import Booking, BookingSnapshot

SnapshotListener = Callable[[BookingSnapshot], None]
SyncErrorListener = Callable[[SyncError], None]
EventHandler = Callable[[DomainEvent], None]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def configure_logging(level: str = "INFO") -> None:
    """Настраивает корневой логгер приложения."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


class StdlibLogger(ports.ILogger):
    """Логгер поверх стандартного logging; контекст выводится как JSON."""

    def __init__(self, name: str = "cabin_booking"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, context: Dict[str, Any]) -> None:
        if context:
            message = f"{message} | {json.dumps(context, default=str, ensure_ascii=False)}"
        self._logger.log(level, message)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, kwargs)


class InMemoryEventBus(ports.IEventBus):
    """
    Шина доменных событий в памяти.

    Обработчик, подписанный на базовый класс события, получает и все его
    подклассы: подписка на DomainEvent видит все события бронирования.
    """

    def __init__(self, logger: Optional[ports.ILogger] = None):
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logger or StdlibLogger("cabin_booking.events")

    def publish(self, event: DomainEvent) -> None:
        handlers = [
            handler
            for event_type in type(event).__mro__
            for handler in self._handlers.get(event_type, ())
        ]
        if not handlers:
            self._logger.debug("Event has no handlers", event_type=type(event).__name__)
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self._logger.error(
                    "Event handler failed",
                    event_type=type(event).__name__,
                    booking_id=getattr(event, "booking_id", None),
                    error=str(e),
                )

    def subscribe(
        self, event_type: Type[DomainEvent], handler: EventHandler
    ) -> ports.Unsubscribe:
        """Подписывает обработчик; возвращает функцию отписки."""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe


@dataclass(frozen=True)
class StoreTimestamp:
    """Собственный тип времени хранилища (секунды и наносекунды эпохи)."""

    seconds: int
    nanoseconds: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> "StoreTimestamp":
        value = to_utc(value)
        whole = (value - _EPOCH) // timedelta(seconds=1)
        return cls(seconds=whole, nanoseconds=value.microsecond * 1000)

    @classmethod
    def now(cls) -> "StoreTimestamp":
        return cls.from_datetime(now())

    def to_datetime(self) -> datetime:
        base = datetime.fromtimestamp(self.seconds, tz=timezone.utc)
        return base.replace(microsecond=self.nanoseconds // 1000)


class InMemoryRecordStore(ports.IRecordStore):
    """
    Хранилище записей в памяти с push-подпиской.

    Ведет себя как realtime-хранилище: после каждой записи всем
    подписчикам рассылается полный набор записей, доставка идет
    следующей итерацией event loop. Значения datetime сохраняются
    в собственном формате времени (StoreTimestamp). Запись - last-write-wins,
    без условных проверок.
    """

    def __init__(self, latency: float = 0.0):
        self._records: Dict[EntityId, Dict[str, Any]] = {}
        self._subscribers: List[Tuple[ports.SnapshotCallback, ports.ErrorCallback]] = []
        self._latency = latency
        # Если задано, каждая операция записи выбрасывает это исключение
        self.fail_writes: Optional[Exception] = None

    def subscribe(
        self, on_snapshot: ports.SnapshotCallback, on_error: ports.ErrorCallback
    ) -> ports.Unsubscribe:
        entry = (on_snapshot, on_error)
        self._subscribers.append(entry)
        on_snapshot(self.records())

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def records(self) -> List[ports.RawRecord]:
        """Копия текущего набора записей."""
        return [dict(fields, id=record_id) for record_id, fields in self._records.items()]

    async def create(self, fields: Dict[str, Any]) -> EntityId:
        await self._before_write()
        record_id = generate_id()
        self._records[record_id] = self._to_native(fields)
        self._notify()
        return record_id

    async def update(self, record_id: EntityId, fields: Dict[str, Any]) -> None:
        await self._before_write()
        if record_id not in self._records:
            raise KeyError(f"Record {record_id} not found")
        self._records[record_id] = {**self._records[record_id], **self._to_native(fields)}
        self._notify()

    async def delete(self, record_id: EntityId) -> None:
        await self._before_write()
        # Удаление отсутствующей записи не является ошибкой
        if self._records.pop(record_id, None) is not None:
            self._notify()

    def put_raw(self, record_id: EntityId, fields: Dict[str, Any]) -> None:
        """Кладет запись как есть, без преобразования типов (запись другого клиента)."""
        self._records[record_id] = dict(fields)
        self._notify()

    def emit_error(self, error: Exception) -> None:
        """Сообщает подписчикам о сбое соединения."""
        for _, on_error in list(self._subscribers):
            on_error(error)

    async def _before_write(self) -> None:
        await asyncio.sleep(self._latency)
        if self.fail_writes is not None:
            raise self.fail_writes

    def _notify(self) -> None:
        for entry in list(self._subscribers):
            self._deliver(entry, self.records())

    def _deliver(self, entry, records: List[ports.RawRecord]) -> None:
        def callback() -> None:
            # Подписчик мог отписаться, пока доставка ждала своей очереди
            if entry in self._subscribers:
                entry[0](records)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback()
        else:
            loop.call_soon(callback)

    @staticmethod
    def _to_native(fields: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: StoreTimestamp.from_datetime(value) if isinstance(value, datetime) else value
            for key, value in fields.items()
        }


class BookingSyncAdapter:
    """
    Граница с внешним хранилищем.

    Превращает сырые записи из push-подписки в нормализованные значения
    Booking, хранит последний известный снимок и раздает его подписчикам.
    Операции записи возвращают явный Outcome вместо исключений.
    """

    def __init__(
        self,
        store: ports.IRecordStore,
        logger: Optional[ports.ILogger] = None,
        clock: Callable[[], datetime] = now,
    ):
        self._store = store
        self._logger = logger or StdlibLogger("cabin_booking.sync")
        self._clock = clock
        self._snapshot = BookingSnapshot()
        self._has_snapshot = False
        self._listeners: List[SnapshotListener] = []
        self._error_listeners: List[SyncErrorListener] = []
        self._unsubscribe_store: Optional[ports.Unsubscribe] = None
        self.degraded = False
        self.last_error: Optional[SyncError] = None

    @property
    def snapshot(self) -> BookingSnapshot:
        """Последний известный снимок."""
        return self._snapshot

    @property
    def connected(self) -> bool:
        return self._unsubscribe_store is not None

    def connect(self) -> None:
        """Подписывается на хранилище."""
        if self._unsubscribe_store is None:
            self._unsubscribe_store = self._store.subscribe(self._on_records, self._on_error)
            self._logger.info("Subscribed to booking store")

    def disconnect(self) -> None:
        """Отписывается от хранилища; последний снимок сохраняется."""
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None
            self._logger.info("Unsubscribed from booking store")

    def subscribe(
        self,
        listener: SnapshotListener,
        on_error: Optional[SyncErrorListener] = None,
    ) -> ports.Unsubscribe:
        """Подписывает слушателя на снимки; последний снимок доставляется сразу."""
        self._listeners.append(listener)
        if on_error is not None:
            self._error_listeners.append(on_error)
        if self._has_snapshot:
            self._deliver(listener, self._snapshot)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if on_error is not None and on_error in self._error_listeners:
                self._error_listeners.remove(on_error)

        return unsubscribe

    def normalize(self, records: List[ports.RawRecord]) -> BookingSnapshot:
        """Нормализует записи; некорректные пропускаются с предупреждением."""
        bookings = []
        for raw in records:
            try:
                bookings.append(Booking.model_validate(raw))
            except PydanticValidationError as e:
                self._logger.warning(
                    "Skipping booking record with invalid data",
                    record_id=raw.get("id"),
                    errors=[err["msg"] for err in e.errors()],
                )
        return BookingSnapshot(bookings=tuple(bookings), received_at=self._clock())

    def _on_records(self, records: List[ports.RawRecord]) -> None:
        self._snapshot = self.normalize(records)
        self._has_snapshot = True
        if self.degraded:
            self.degraded = False
            self._logger.info("Booking store connection restored")

        for listener in list(self._listeners):
            self._deliver(listener, self._snapshot)

    def _deliver(self, listener: SnapshotListener, snapshot: BookingSnapshot) -> None:
        # Ошибка одного слушателя не мешает остальным и не прерывает подписку
        try:
            listener(snapshot)
        except Exception as e:
            self._logger.error("Error in snapshot listener", error=str(e))

    def _on_error(self, error: Exception) -> None:
        sync_error = SyncError(str(error))
        self.degraded = True
        self.last_error = sync_error
        self._logger.warning(
            "Booking store subscription failed, using last known snapshot",
            error=str(error),
            bookings=len(self._snapshot),
        )
        for listener in list(self._error_listeners):
            try:
                listener(sync_error)
            except Exception as e:
                self._logger.error("Error in sync error listener", error=str(e))

    async def create(self, fields: Dict[str, Any]) -> Outcome[EntityId]:
        try:
            record_id = await self._store.create(fields)
        except Exception as e:
            return self._write_failed("create", None, e)
        return Outcome.success(record_id)

    async def update(self, record_id: EntityId, fields: Dict[str, Any]) -> Outcome[None]:
        try:
            await self._store.update(record_id, fields)
        except Exception as e:
            return self._write_failed("update", record_id, e)
        return Outcome.success()

    async def delete(self, record_id: EntityId) -> Outcome[None]:
        try:
            await self._store.delete(record_id)
        except Exception as e:
            return self._write_failed("delete", record_id, e)
        return Outcome.success()

    def _write_failed(
        self, operation: str, record_id: Optional[EntityId], error: Exception
    ) -> Outcome:
        self._logger.error(
            f"Booking store {operation} failed", record_id=record_id, error=str(error)
        )
        return Outcome.failure(WriteError(f"{operation} failed: {error}"))
