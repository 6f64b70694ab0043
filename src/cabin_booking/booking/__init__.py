"""
Модуль контекста бронирования (Booking Context).

Отвечает за бронирование кабинок, включая:
- Расчет занятости кабинок по набору бронирований
- Проверку новых заявок на конфликты
- Переходы статусов бронирования и их запись в хранилище
- Автоматическое завершение истекших сессий
"""

from . import application, domain, infrastructure, interfaces, watchdog

__all__ = [
    "domain",
    "application",
    "infrastructure",
    "interfaces",
    "watchdog",
]
