"""
Настройки приложения.

Значения по умолчанию можно переопределить переменными окружения
с префиксом CABIN_BOOKING_ или файлом .env в текущем каталоге.
"""

import os
from typing import List, Optional, Tuple

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

from .booking.domain import Cabin

ENV_PREFIX = "CABIN_BOOKING_"

# Имя поля настроек -> суффикс переменной окружения
ENV_VARS = {
    "cabin_count": "CABIN_COUNT",
    "cabin_capacities": "CABIN_CAPACITIES",
    "booking_duration_hours": "DURATION_HOURS",
    "watchdog_interval_seconds": "WATCHDOG_INTERVAL",
    "critical_threshold_minutes": "CRITICAL_MINUTES",
    "export_dir": "EXPORT_DIR",
    "log_level": "LOG_LEVEL",
}


class Settings(BaseModel):
    """Настройки системы бронирования."""

    cabin_count: int = Field(15, gt=0)
    cabin_capacities: Tuple[int, ...] = (4, 5, 6)
    booking_duration_hours: int = Field(2, gt=0)
    watchdog_interval_seconds: float = Field(1.0, gt=0)
    critical_threshold_minutes: int = Field(10, ge=0)
    export_dir: str = "."
    log_level: str = "INFO"

    @field_validator("cabin_capacities", mode="before")
    @classmethod
    def _split_capacities(cls, v):
        if isinstance(v, str):
            return tuple(int(part) for part in v.split(",") if part.strip())
        return v

    @field_validator("cabin_capacities")
    @classmethod
    def _capacities_positive(cls, v: Tuple[int, ...]) -> Tuple[int, ...]:
        if not v or any(capacity <= 0 for capacity in v):
            raise ValueError("Вместимости должны быть положительными и не пустыми")
        return v


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Читает настройки из .env и окружения."""
    load_dotenv(env_file or find_dotenv(usecwd=True))
    values = {}
    for field_name, suffix in ENV_VARS.items():
        raw = os.getenv(ENV_PREFIX + suffix)
        if raw is not None:
            values[field_name] = raw
    return Settings(**values)


def build_cabin_catalog(settings: Settings) -> List[Cabin]:
    """Каталог кабинок C1..Cn; вместимости повторяются по кругу."""
    capacities = settings.cabin_capacities
    return [
        Cabin(
            id=f"C{i + 1}",
            name=f"Cabin {i + 1}",
            capacity=capacities[i % len(capacities)],
        )
        for i in range(settings.cabin_count)
    ]
