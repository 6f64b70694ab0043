"""
Модуль выгрузки бронирований (Reporting).

Формирует CSV-выгрузку набора бронирований для администратора.
"""

from . import application, domain, infrastructure

__all__ = [
    "domain",
    "application",
    "infrastructure",
]
