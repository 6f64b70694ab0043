from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .booking.application import (
    AdminActionDispatcher,
    BookingApplicationService,
    LifecycleManager,
)
from .booking.infrastructure import (
    BookingSyncAdapter,
    InMemoryEventBus,
    InMemoryRecordStore,
    StdlibLogger,
    configure_logging,
)
from .booking.interfaces import ILogger, IRecordStore
from .booking.watchdog import ExpiryWatchdog
from .reporting.application import BookingExportService
from .reporting.infrastructure import CsvFileWriter
from .settings import Settings, build_cabin_catalog, load_settings
from .shared_kernel import DomainEvent, now


def log_domain_event(event: DomainEvent, logger: ILogger) -> None:
    """Обработчик доменных событий: пишет их в журнал."""
    logger.info(type(event).__name__, **event.model_dump(exclude={"event_id"}))


def bootstrap_app(
    settings: Optional[Settings] = None,
    store: Optional[IRecordStore] = None,
    clock: Callable[[], datetime] = now,
) -> Dict[str, Any]:
    """Создает и настраивает все компоненты приложения."""
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    logger = StdlibLogger("cabin_booking")

    # 1. Шина событий и журнал переходов
    event_bus = InMemoryEventBus(logger=StdlibLogger("cabin_booking.events"))
    audit_logger = StdlibLogger("cabin_booking.audit")
    event_bus.subscribe(DomainEvent, lambda e: log_domain_event(e, audit_logger))

    # 2. Хранилище и адаптер синхронизации
    store = store if store is not None else InMemoryRecordStore()
    sync = BookingSyncAdapter(store, logger=StdlibLogger("cabin_booking.sync"), clock=clock)

    # 3. Сервисы, которым передаются зависимости
    lifecycle = LifecycleManager(
        sync, event_bus=event_bus, logger=StdlibLogger("cabin_booking.lifecycle"), clock=clock
    )
    booking_service = BookingApplicationService(
        sync,
        lifecycle,
        catalog=build_cabin_catalog(settings),
        duration_hours=settings.booking_duration_hours,
        event_bus=event_bus,
        clock=clock,
    )
    admin_dispatcher = AdminActionDispatcher(lifecycle)
    watchdog = ExpiryWatchdog(
        sync,
        lifecycle,
        clock=clock,
        interval_seconds=settings.watchdog_interval_seconds,
        critical_threshold_minutes=settings.critical_threshold_minutes,
    )
    exporter = BookingExportService(CsvFileWriter(settings.export_dir), clock=clock)

    # 4. Подписка на хранилище
    sync.connect()
    logger.info("Cabin booking engine ready", cabins=settings.cabin_count)

    return {
        "settings": settings,
        "event_bus": event_bus,
        "store": store,
        "sync": sync,
        "lifecycle": lifecycle,
        "booking_service": booking_service,
        "admin_dispatcher": admin_dispatcher,
        "watchdog": watchdog,
        "exporter": exporter,
    }


async def shutdown_app(app: Dict[str, Any]) -> None:
    """Останавливает таймер сторожа и отписывается от хранилища."""
    await app["watchdog"].stop()
    app["watchdog"].close()
    app["booking_service"].close()
    app["lifecycle"].close()
    app["sync"].disconnect()
