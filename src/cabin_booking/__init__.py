"""
Система бронирования кабинок.

Ядро: расчет занятости, машина состояний бронирования, проверка
конфликтов и автоматическое завершение истекших сессий поверх общего
realtime-хранилища.
"""

__version__ = "0.1.0"
