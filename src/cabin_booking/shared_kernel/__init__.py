"""
Общее ядро (Shared Kernel) системы бронирования кабинок.

Содержит общие типы данных и утилиты, используемые в различных модулях.
"""

from .domain import (
    Actor,
    ActorRole,
    BookingStatus,
    ConflictError,
    DomainEvent,
    # Исключения
    DomainException,
    # Базовые типы
    EntityId,
    InvalidTransition,
    NothingToExport,
    Outcome,
    SyncError,
    ValidationError,
    WriteError,
    admin_display_name,
    generate_id,
    isoformat_ms,
    normalize_instant,
    # Утилиты
    now,
    to_utc,
)

__all__ = [
    # Базовые типы
    "EntityId",
    "generate_id",
    "Actor",
    "ActorRole",
    "Outcome",
    "DomainEvent",
    # Перечисления
    "BookingStatus",
    # Исключения
    "DomainException",
    "ValidationError",
    "ConflictError",
    "InvalidTransition",
    "WriteError",
    "SyncError",
    "NothingToExport",
    # Утилиты
    "now",
    "to_utc",
    "normalize_instant",
    "isoformat_ms",
    "admin_display_name",
]
